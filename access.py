"""
Access tiers for the API.

The identity provider signs a session token (HS256, shared secret) that the
browser sends back in the session cookie or as a bearer token. Routes declare
their tier by depending on current_user (public), require_user (authenticated)
or require_admin (admin); the dependency rejects the call before the handler
runs.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError

import services
from config import settings
from database import Database
from errors import Forbidden, Unauthorized, Unavailable
from schemas import Role

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


def get_db(request: Request) -> Database:
    database = getattr(request.app.state, "database", None)
    if database is None:
        raise Unavailable("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return database


def create_session_token(
    open_id: str,
    name: Optional[str] = None,
    email: Optional[str] = None,
    login_method: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    payload: Dict[str, Any] = {"openId": open_id, "name": name, "email": email, "loginMethod": login_method}
    payload["exp"] = datetime.now(timezone.utc) + (expires_delta or timedelta(days=365))
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_session_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.InvalidTokenError as e:
        logger.debug("Rejected session token: %s", e)
        return None
    if not claims.get("openId"):
        logger.debug("Session token without openId claim")
        return None
    return claims


def session_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials is not None:
        return credentials.credentials
    return request.cookies.get(settings.cookie_name)


def session_claims(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> Optional[Dict[str, Any]]:
    token = session_token(request, credentials)
    if not token:
        return None
    return decode_session_token(token)


def resolve_user(db: Database, claims: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if claims is None:
        return None
    try:
        return services.sync_user(db, claims, settings.owner_open_id)
    except ValidationError as e:
        logger.debug("Session claims failed validation: %s", e)
        return None


def current_user(
    claims: Optional[Dict[str, Any]] = Depends(session_claims),
    db: Database = Depends(get_db),
) -> Optional[Dict[str, Any]]:
    return resolve_user(db, claims)


# Tier checks read the token before the database dependency is resolved;
# anonymous callers get 401/403 even when the database is down.

def user_claims(claims: Optional[Dict[str, Any]] = Depends(session_claims)) -> Dict[str, Any]:
    if claims is None:
        raise Unauthorized()
    return claims


def admin_claims(claims: Optional[Dict[str, Any]] = Depends(session_claims)) -> Dict[str, Any]:
    if claims is None:
        raise Forbidden()
    return claims


def require_user(
    claims: Dict[str, Any] = Depends(user_claims),
    db: Database = Depends(get_db),
) -> Dict[str, Any]:
    user = resolve_user(db, claims)
    if user is None:
        raise Unauthorized()
    return user


def require_admin(
    claims: Dict[str, Any] = Depends(admin_claims),
    db: Database = Depends(get_db),
) -> Dict[str, Any]:
    user = resolve_user(db, claims)
    if user is None or user.get("role") != Role.admin.value:
        raise Forbidden()
    return user
