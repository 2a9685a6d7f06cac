"""
MongoDB access for Quizly

A single module-level client/database handle plus small helpers shared by the
services. Collection names are the lowercased schema names ("user", "test",
"comment", "answer", "refresh_token").
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient

from config import DATABASE_NAME, DATABASE_URL
from errors import BadRequestError

# MongoClient connects lazily, so importing this module never blocks
client = MongoClient(DATABASE_URL, tz_aware=True)
db = client[DATABASE_NAME]

# Fields never sent to clients
PRIVATE_FIELDS = ("password_hash", "activation_code")


def get_db():
    """Dependency returning the active database handle."""
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_document(db, collection_name: str, data: Union[BaseModel, dict]) -> ObjectId:
    """Insert a document, stamping created_at/updated_at, and return its id."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return result.inserted_id


def to_object_id(value: Any, what: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise BadRequestError(f"Invalid {what}")


def to_public(value):
    """
    Convert a Mongo document (or a list of them) into JSON-serializable data.

    ``_id`` becomes ``id``, ObjectIds become strings and private fields are
    dropped, including inside populated sub-documents.
    """
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [to_public(v) for v in value]
    if isinstance(value, dict):
        d = {k: to_public(v) for k, v in value.items() if k not in PRIVATE_FIELDS}
        if "_id" in d:
            d["id"] = d.pop("_id")
        return d
    return value


def populate(db, collection_name: str, ids: Iterable[ObjectId], fields: Optional[Iterable[str]] = None) -> List[dict]:
    """
    Resolve a list of references to documents, keeping the order of ``ids``.

    References that no longer resolve are skipped. When ``fields`` is given only
    those fields (plus ``_id``) are returned.
    """
    ids = list(ids)
    if not ids:
        return []
    projection = {f: 1 for f in fields} if fields else None
    found: Dict[ObjectId, dict] = {
        d["_id"]: d for d in db[collection_name].find({"_id": {"$in": ids}}, projection)
    }
    return [found[i] for i in ids if i in found]


def populate_author(db, docs: List[dict], fields: Iterable[str] = ("username",)) -> List[dict]:
    """Replace each document's ``author`` id with the projected user document."""
    fields = list(fields)
    authors = populate(db, "user", {d["author"] for d in docs if d.get("author")}, fields)
    by_id = {a["_id"]: a for a in authors}
    result = []
    for d in docs:
        d = {**d}
        d["author"] = by_id.get(d.get("author"))
        result.append(d)
    return result


def ensure_indexes(db) -> None:
    """Unique user e-mail/username; creating an existing index is a no-op."""
    db["user"].create_index("email", unique=True)
    db["user"].create_index("username", unique=True)
