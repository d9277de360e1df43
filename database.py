"""
Database helpers for the School Feedback API.

The MongoDB handle is created once by the app factory and stored on
``app.state.db``; route handlers receive it through ``Depends(get_db)``.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from schemas import School

logger = logging.getLogger(__name__)

USERS = "users"
POSTS = "posts"
NOTIFICATIONS = "notifications"
SCHOOLS = "schools"

SCHOOLS_SEED = [
    {
        "name": "School No. 1",
        "type": "Public",
        "location": "Ulaanbaatar",
        "description": "One of the oldest and most prestigious public schools",
    },
    {
        "name": "School No. 2",
        "type": "Public",
        "location": "Ulaanbaatar",
        "description": "Known for strong academic programs",
    },
    {
        "name": "School No. 3",
        "type": "Public",
        "location": "Ulaanbaatar",
        "description": "Focus on science and mathematics",
    },
    {
        "name": "School No. 4",
        "type": "Public",
        "location": "Ulaanbaatar",
        "description": "Comprehensive education programs",
    },
    {
        "name": "School No. 5",
        "type": "Public",
        "location": "Ulaanbaatar",
        "description": "Modern facilities and diverse programs",
    },
    {
        "name": "Amjilt Cyber",
        "type": "Private",
        "location": "Ulaanbaatar",
        "description": "Specialized in technology and computer science",
    },
    {
        "name": "Tsonjin Boarding",
        "type": "Private",
        "location": "Ulaanbaatar",
        "description": "Boarding school with comprehensive education",
    },
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def connect(database_url: str, database_name: str) -> Database:
    """Build a pooled client and return the named database. The client connects lazily."""
    client = MongoClient(database_url, uuidRepresentation="standard")
    return client[database_name]


def get_db(request: Request) -> Database:
    """FastAPI dependency returning the database handle owned by the app."""
    return request.app.state.db


def ensure_indexes(db: Database) -> None:
    db[USERS].create_index("uid", unique=True)
    db[POSTS].create_index([("createdAt", DESCENDING)])
    db[POSTS].create_index([("userId", ASCENDING), ("createdAt", DESCENDING)])
    db[NOTIFICATIONS].create_index([("recipient", ASCENDING), ("createdAt", DESCENDING)])


def seed_schools(db: Database) -> None:
    """Replace the schools reference collection with the fixed seed list."""
    db[SCHOOLS].delete_many({})
    logger.info("Cleared existing schools")
    if SCHOOLS_SEED:
        db[SCHOOLS].insert_many([School(**school).model_dump() for school in SCHOOLS_SEED])
        logger.info("Initialized schools collection with %d schools", len(SCHOOLS_SEED))


def parse_object_id(value: str) -> Optional[ObjectId]:
    """Return an ObjectId for a well-formed hex id, otherwise None."""
    if ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document stamped with createdAt/updatedAt and return its id as a string."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict.setdefault("createdAt", now)
    data_dict.setdefault("updatedAt", now)
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[tuple]] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def _jsonable(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


def to_public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Convert a Mongo document to a JSON-serializable dict with ``id`` instead of ``_id``."""
    if not doc:
        return doc
    d = {**doc}
    _id = d.pop("_id", None)
    if _id is not None:
        d["id"] = str(_id)
    return _jsonable(d)
