"""
MongoDB access for the tracker.

The collection name for each document model is the lowercased class name
(User -> "user"). `db` stays None until DATABASE_URL and DATABASE_NAME are
configured; request handlers get it through `get_db`.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Union

from bson import ObjectId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

from errors import NotFound, Unexpected

load_dotenv()

logger = logging.getLogger(__name__)

_client = None
db = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

if database_url and database_name:
    _client = MongoClient(database_url)
    db = _client[database_name]


def get_db():
    if db is None:
        logger.error("Database requested but DATABASE_URL/DATABASE_NAME are not set")
        raise Unexpected("Database not available")
    return db


def ensure_indexes(database) -> None:
    """Create the indexes the tracker relies on. Safe to call on every startup."""
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["user"].create_index([("token", ASCENDING)], sparse=True)
    database["project"].create_index([("creator", ASCENDING)])
    database["project"].create_index([("collaborators", ASCENDING)])
    database["task"].create_index([("project", ASCENDING)])
    logger.info("Database indexes ensured")


def now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(database, collection_name: str, data: Union[BaseModel, dict]) -> ObjectId:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    data_dict["created_at"] = now()
    data_dict["updated_at"] = now()

    result = database[collection_name].insert_one(data_dict)
    return result.inserted_id


def get_documents(database, collection_name: str, filter_dict: dict = None, projection: dict = None) -> list:
    return list(database[collection_name].find(filter_dict or {}, projection))


def to_object_id(value: Any, what: str = "Resource") -> ObjectId:
    """Parse a client supplied id, failing with NotFound before any store access."""
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise NotFound(f"The {what.lower()} id is not valid")
    return ObjectId(value)


def find_by_id(database, collection_name: str, value: Any, what: str, projection: dict = None) -> dict:
    oid = to_object_id(value, what)
    doc = database[collection_name].find_one({"_id": oid}, projection)
    if not doc:
        raise NotFound(f"{what} not found")
    return doc


PRIVATE_USER_FIELDS = ("password_hash", "token", "confirmed")


def to_str_id(doc: Any) -> Any:
    """Make a stored document JSON friendly: ObjectIds become strings, secrets are removed."""
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, list):
        return [to_str_id(item) for item in doc]
    if not isinstance(doc, dict):
        return doc
    out = {}
    for key, value in doc.items():
        if key in PRIVATE_USER_FIELDS:
            continue
        out[key] = to_str_id(value)
    return out
