import os
from dataclasses import dataclass, field
from typing import List, Optional


def _split(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str] = None
    database_name: Optional[str] = None
    jwt_secret: str = "devsecret"
    jwt_algorithm: str = "HS256"
    cookie_name: str = "app_session_id"
    owner_open_id: Optional[str] = None
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME"),
            jwt_secret=os.getenv("JWT_SECRET", "devsecret"),
            cookie_name=os.getenv("COOKIE_NAME", "app_session_id"),
            owner_open_id=os.getenv("OWNER_OPEN_ID"),
            cors_origins=_split(os.getenv("CORS_ORIGINS", "*")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            port=int(os.getenv("PORT", 8000)),
        )


settings = Settings.from_env()
