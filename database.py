"""
MongoDB access for SafeTails.

The client is created once at application startup (see ``main.startup``),
kept on ``app.state`` and handed to route handlers through the ``get_db``
dependency. Collection names are the lowercased model names from
``schemas.py`` (``PetPost`` -> ``petpost``).
"""
import math
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, GEOSPHERE, TEXT, MongoClient
from pymongo.database import Database

from errors import InternalError

DATABASE_URL = os.getenv("MONGODB_URI", "mongodb://localhost:27017/safetails")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# fields never sent back to a client
PRIVATE_FIELDS = {
    "password",
    "emailVerificationToken",
    "emailVerificationExpires",
    "passwordResetToken",
    "passwordResetExpires",
}


def connect(uri: Optional[str] = None, name: Optional[str] = None) -> Tuple[MongoClient, Database]:
    client = MongoClient(uri or DATABASE_URL)
    db = client[name] if name else client.get_default_database(default=DATABASE_NAME or "safetails")
    return client, db


def get_db(request: Request) -> Database:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise InternalError("Database not configured")
    return db


def ensure_indexes(db: Database):
    db["user"].create_index("email", unique=True)
    db["petpost"].create_index([("location.coordinates", GEOSPHERE)])
    db["petpost"].create_index([("title", TEXT), ("description", TEXT), ("petName", TEXT)])
    db["petpost"].create_index([("createdAt", DESCENDING)])
    db["alert"].create_index([("location.coordinates", GEOSPHERE)])
    db["alert"].create_index([("type", ASCENDING), ("status", ASCENDING), ("isActive", ASCENDING)])
    db["alert"].create_index([("urgency", ASCENDING), ("createdAt", DESCENDING)])
    db["adoption"].create_index([("status", ASCENDING), ("createdAt", DESCENDING)])
    db["foster"].create_index([("status", ASCENDING), ("createdAt", DESCENDING)])
    db["vetdirectory"].create_index([("location.coordinates", GEOSPHERE)])
    db["comment"].create_index([("createdAt", DESCENDING)])
    db["comment"].create_index([("userType", ASCENDING), ("isApproved", ASCENDING)])
    db["report"].create_index([("status", ASCENDING), ("createdAt", DESCENDING)])
    db["report"].create_index([("postId", ASCENDING), ("status", ASCENDING)])


def now() -> datetime:
    # naive UTC, which is what pymongo hands back on reads
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document, stamping createdAt/updatedAt. Returns the new id as a string."""
    if isinstance(data, BaseModel):
        doc = data.model_dump(exclude_none=True)
    else:
        doc = dict(data)
    stamp = now()
    doc.setdefault("createdAt", stamp)
    doc["updatedAt"] = stamp
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_by_id(db: Database, collection_name: str, doc_id: Any) -> Optional[Dict[str, Any]]:
    oid = to_object_id(doc_id)
    if oid is None:
        return None
    return db[collection_name].find_one({"_id": oid})


def update_by_id(db: Database, collection_name: str, doc_id: ObjectId, changes: Dict[str, Any], unset: Iterable[str] = ()) -> Optional[Dict[str, Any]]:
    update: Dict[str, Any] = {"$set": {**changes, "updatedAt": now()}}
    unset = list(unset)
    if unset:
        update["$unset"] = {field: "" for field in unset}
    db[collection_name].update_one({"_id": doc_id}, update)
    return db[collection_name].find_one({"_id": doc_id})


def page_params(page: Any, limit: Any, default_limit: int = 10, max_limit: int = 100) -> Tuple[int, int]:
    try:
        page = max(int(page), 1)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = default_limit
    return page, min(max(limit, 1), max_limit)


def pagination(total: int, page: int, limit: int) -> Dict[str, int]:
    return {"total": total, "page": page, "limit": limit, "pages": math.ceil(total / limit) if limit else 0}


def paginate(db: Database, collection_name: str, filter_dict: Dict[str, Any], page: int, limit: int, sort: Optional[List[Tuple[str, int]]] = None) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
    collection = db[collection_name]
    total = collection.count_documents(filter_dict)
    cursor = collection.find(filter_dict).sort(sort or [("createdAt", DESCENDING)]).skip((page - 1) * limit).limit(limit)
    return list(cursor), pagination(total, page, limit)


def paginate_list(items: List[Any], page: int, limit: int) -> Tuple[List[Any], Dict[str, int]]:
    start = (page - 1) * limit
    return items[start:start + limit], pagination(len(items), page, limit)


def to_public(doc: Any) -> Any:
    """Convert a Mongo document into JSON-friendly data.

    ``_id`` becomes ``id`` at every level, ObjectIds become strings and
    credential fields are dropped.
    """
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, list):
        return [to_public(v) for v in doc]
    if not isinstance(doc, dict):
        return doc
    out = {}
    for key, value in doc.items():
        if key in PRIVATE_FIELDS:
            continue
        if key == "_id":
            out["id"] = to_public(value)
        else:
            out[key] = to_public(value)
    return out


def user_summary(db: Database, user_id: Any) -> Optional[Dict[str, Any]]:
    """Small public view of a referenced user, or None for a dangling reference."""
    if user_id is None:
        return None
    user = get_by_id(db, "user", user_id)
    if not user:
        return None
    return {"id": str(user["_id"]), "name": user.get("name"), "email": user.get("email"), "role": user.get("role")}


# --- Activity log ---

def log_activity(db: Database, message: str, actor: Any = None):
    db["activity"].insert_one({"message": message, "actor": to_object_id(actor) if actor else None, "createdAt": now()})


def recent_activity(db: Database, limit: int = 10) -> List[str]:
    cursor = db["activity"].find({}).sort([("createdAt", DESCENDING), ("_id", DESCENDING)]).limit(limit)
    return [entry["message"] for entry in cursor]
