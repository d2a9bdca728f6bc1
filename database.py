"""
MongoDB access for the Toolstore.

A Database is built once at application startup from Settings and handed to
the routes through a FastAPI dependency; nothing here holds a module-level
connection. Every document uses an integer _id drawn from the "counters"
collection so ids stay stable and human friendly (product 7, request 12).
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument

from config import Settings

logger = logging.getLogger(__name__)

Sort = List[Tuple[str, int]]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = doc.pop("_id")
    return doc


class Database:
    def __init__(self, client: MongoClient, name: str):
        self.client = client
        self.name = name
        self.db = client[name]

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["Database"]:
        if not settings.database_url or not settings.database_name:
            logger.warning("DATABASE_URL or DATABASE_NAME not set, running without a database")
            return None
        client = MongoClient(settings.database_url, serverSelectionTimeoutMS=5000)
        logger.info("Connected to MongoDB database %s", settings.database_name)
        return cls(client, settings.database_name)

    def __getitem__(self, collection_name: str):
        return self.db[collection_name]

    def close(self) -> None:
        self.client.close()
        logger.info("Closed MongoDB connection")

    def collection_names(self) -> List[str]:
        return self.db.list_collection_names()

    def ensure_indexes(self) -> None:
        self.db["user"].create_index("open_id", unique=True)
        self.db["cartitem"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
        self.db["coursedeliverable"].create_index("payment_request_id", unique=True)
        self.db["coursedeliverable"].create_index("user_id")
        self.db["paymentrequest"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING), ("status", ASCENDING)])
        self.db["order"].create_index("user_id")
        self.db["product"].create_index("category_id")
        self.db["adminsettings"].create_index("admin_id")

    def next_id(self, collection_name: str) -> int:
        counter = self.db["counters"].find_one_and_update(
            {"_id": collection_name},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return counter["seq"]

    def create_document(self, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> int:
        if isinstance(data, BaseModel):
            data_dict = data.model_dump()
        else:
            data_dict = dict(data)
        stamp = now_utc()
        data_dict["created_at"] = stamp
        data_dict["updated_at"] = stamp
        data_dict["_id"] = self.next_id(collection_name)
        self.db[collection_name].insert_one(data_dict)
        return data_dict["_id"]

    def get_document(self, collection_name: str, doc_id: int) -> Optional[Dict[str, Any]]:
        return serialize_doc(self.db[collection_name].find_one({"_id": doc_id}))

    def get_documents(
        self,
        collection_name: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
        sort: Optional[Sort] = None,
    ) -> List[Dict[str, Any]]:
        cursor = self.db[collection_name].find(filter_dict or {})
        cursor = cursor.sort(sort or [("_id", ASCENDING)])
        if limit:
            cursor = cursor.limit(limit)
        return [serialize_doc(d) for d in cursor]

    def update_document(
        self,
        collection_name: str,
        filter_dict: Dict[str, Any],
        fields: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """Set fields on the first match and return it as it is after the write, or None."""
        doc = self.db[collection_name].find_one_and_update(
            filter_dict,
            {"$set": {**fields, "updated_at": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize_doc(doc)

    def latest(self, collection_name: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Most recently updated match, highest id first on ties."""
        docs = self.get_documents(
            collection_name, filter_dict, limit=1, sort=[("updated_at", DESCENDING), ("_id", DESCENDING)]
        )
        return docs[0] if docs else None


class UnitOfWork:
    """
    Groups several writes so a failure part way through undoes the earlier ones.

    Each write registers a compensating action with on_rollback(). If the with
    block raises, the compensations run newest first and the exception is
    re-raised; a clean exit discards them.
    """

    def __init__(self, name: str):
        self.name = name
        self._undo: List[Tuple[Callable[..., Any], tuple]] = []

    def on_rollback(self, action: Callable[..., Any], *args: Any) -> None:
        self._undo.append((action, args))

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self._undo.clear()
            return False
        logger.warning("Rolling back %s after %s: %s", self.name, exc_type.__name__, exc)
        while self._undo:
            action, args = self._undo.pop()
            try:
                action(*args)
            except Exception:
                logger.exception("Compensation step failed while rolling back %s", self.name)
        return False
