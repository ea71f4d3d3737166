import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient, ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from config import DATABASE_URL, DATABASE_NAME
from errors import ValidationError

logger = logging.getLogger(__name__)

IDEAS = "idea"
COMMENTS = "comment"
PROJECT_LINKS = "project_link"

_client = MongoClient(DATABASE_URL)
db = _client[DATABASE_NAME]


def get_db():
    return db


def ensure_indexes(database) -> None:
    database[IDEAS].create_index([("created_at", DESCENDING)])
    database[IDEAS].create_index([("view_count", DESCENDING)])
    database[IDEAS].create_index([("free_tier", ASCENDING), ("category", ASCENDING)])
    database[COMMENTS].create_index([("idea_id", ASCENDING), ("created_at", ASCENDING)])
    database[COMMENTS].create_index([("parent_comment_id", ASCENDING)])
    database[COMMENTS].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database[PROJECT_LINKS].create_index([("idea_id", ASCENDING), ("created_at", DESCENDING)])
    database[PROJECT_LINKS].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])


def parse_object_id(value: Any, label: str = "resource") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label} id")


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    # ObjectIds and datetimes are not JSON friendly
    for k, v in list(d.items()):
        if isinstance(v, ObjectId):
            d[k] = str(v)
        elif isinstance(v, datetime):
            d[k] = v.isoformat()
    return d


def create_document(collection, data) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    now = datetime.now(timezone.utc)
    payload = {**data, "created_at": now, "updated_at": now}
    res = collection.insert_one(payload)
    payload["_id"] = res.inserted_id
    return payload


def get_documents(
    collection,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[Sequence[Tuple[str, int]]] = None,
    skip: int = 0,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = collection.find(filter_dict or {})
    if sort:
        cursor = cursor.sort(list(sort))
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ping(database) -> bool:
    try:
        database.command("ping")
        return True
    except PyMongoError as e:
        logger.warning("Database ping failed: %s", e)
        return False
