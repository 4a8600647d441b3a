"""
Database helpers

MongoDB connection plus the small document helpers used across the app.
Collection names are the lowercase of the schema class names.
"""
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient

from config import DATABASE_NAME, DATABASE_URL

client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document with created/updated timestamps and return its id as str."""
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)

    now = datetime.now(timezone.utc)
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now

    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, sort: Optional[list] = None) -> list:
    """Fetch documents from a collection, optionally sorted and limited."""
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def to_str_id(doc: dict) -> dict:
    """Copy of a Mongo document with `_id` exposed as a string `id`."""
    if not doc:
        return doc
    d = dict(doc)
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    return d
