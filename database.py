"""
MongoDB access for the contest service.

The client is built once from settings and handed to handlers through the
`get_db` dependency; tests override that dependency with an in-memory client.
"""
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import get_settings

logger = logging.getLogger(__name__)

USERS = "users"
CONTESTS = "contests"
SUBMISSIONS = "submissions"
PAYMENTS = "payments"


@lru_cache(maxsize=1)
def get_client() -> MongoClient:
    settings = get_settings()
    return MongoClient(settings.database_url, tz_aware=True)


def get_db() -> Database:
    return get_client()[get_settings().database_name]


def ensure_indexes(db: Database) -> None:
    """One user per subject id, one payment and one submission per (user, contest)."""
    db[USERS].create_index([("uid", ASCENDING)], unique=True)
    db[PAYMENTS].create_index([("uid", ASCENDING), ("contestId", ASCENDING)], unique=True)
    db[SUBMISSIONS].create_index([("uid", ASCENDING), ("contestId", ASCENDING)], unique=True)
    db[CONTESTS].create_index([("status", ASCENDING), ("participants", ASCENDING)])
    logger.info("indexes ensured", extra={"database": db.name})


def create_document(db: Database, collection: str, data: BaseModel) -> str:
    doc = data.model_dump(by_alias=True)
    return str(db[collection].insert_one(doc).inserted_id)


def get_documents(db: Database, collection: str, filter_dict: Optional[dict] = None, sort=None, limit: int = 0) -> list:
    cursor = db[collection].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def parse_object_id(value: str) -> Optional[ObjectId]:
    if not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def as_utc(value: datetime) -> datetime:
    # Mongo hands back naive datetimes unless the client is tz-aware
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_str_id(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = dict(doc)
    _id = d.pop("_id", None)
    if _id is not None:
        d["id"] = str(_id)
    return d
