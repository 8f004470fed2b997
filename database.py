"""
Database Helper Functions

MongoDB helper functions used by the route handlers.
Collections: users, books, orders, wishlist, invoices, reviews.
"""

import logging
from datetime import datetime, timezone
from typing import Union, Optional, Dict, Any, List

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient, ASCENDING, DESCENDING

import config

logger = logging.getLogger(__name__)

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]


def _ensure_db():
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump(exclude_none=True)
    return dict(data)


def now() -> datetime:
    return datetime.now(timezone.utc)


def collection(name: str):
    _ensure_db()
    return db[name]


def object_id(value: str) -> ObjectId:
    """Parse a path id; raises bson.errors.InvalidId on malformed input."""
    return ObjectId(value)


def ensure_indexes():
    """Create the unique keys the handlers rely on plus a few lookup indexes."""
    _ensure_db()
    db["users"].create_index("email", unique=True)
    db["wishlist"].create_index([("userEmail", ASCENDING), ("bookId", ASCENDING)], unique=True)
    db["invoices"].create_index("transactionId", unique=True)
    db["books"].create_index([("createdAt", DESCENDING)])
    db["orders"].create_index("userEmail")
    db["orders"].create_index("owner")
    db["reviews"].create_index([("bookId", ASCENDING), ("reviewedAt", DESCENDING)])
    logger.info("Database indexes ensured")


# CRUD helpers

def create_document(collection_name: str, data: Union[BaseModel, dict], stamp: Optional[str] = "createdAt") -> str:
    """Insert a single document, stamping it with the current time"""
    payload = _to_dict(data)
    if stamp:
        payload[stamp] = now()
    result = collection(collection_name).insert_one(payload)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                  sort: Optional[list] = None, skip: Optional[int] = None) -> List[dict]:
    cursor = collection(collection_name).find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(int(skip))
    if limit:
        cursor = cursor.limit(int(limit))
    return [serialize_doc(doc) for doc in cursor]


def count_documents(collection_name: str, filter_dict: Optional[dict] = None) -> int:
    return collection(collection_name).count_documents(filter_dict or {})


def find_document(collection_name: str, filter_dict: dict) -> Optional[dict]:
    return serialize_doc(collection(collection_name).find_one(filter_dict))


def get_document_by_id(collection_name: str, doc_id: str) -> Optional[dict]:
    return find_document(collection_name, {"_id": object_id(doc_id)})


def update_document(collection_name: str, doc_id: str, update_data: Dict[str, Any],
                    extra_filter: Optional[dict] = None) -> dict:
    """$set fields on the document with the given id.

    ``extra_filter`` narrows the match (e.g. only pending orders); the
    caller inspects matchedCount/modifiedCount of the returned result.
    """
    filter_dict = {"_id": object_id(doc_id)}
    if extra_filter:
        filter_dict.update(extra_filter)
    update = {"$set": _to_dict(update_data)}
    update["$set"]["updatedAt"] = now()
    result = collection(collection_name).update_one(filter_dict, update)
    return update_result(result)


def delete_document(collection_name: str, doc_id: str) -> dict:
    result = collection(collection_name).delete_one({"_id": object_id(doc_id)})
    return delete_result(result)


def delete_documents(collection_name: str, filter_dict: dict) -> dict:
    result = collection(collection_name).delete_many(filter_dict)
    return delete_result(result)


# Utility

def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))  # convert ObjectId to string
    return d


def insert_result(inserted_id: str) -> dict:
    return {"acknowledged": True, "insertedId": inserted_id}


def update_result(result) -> dict:
    return {
        "acknowledged": result.acknowledged,
        "matchedCount": result.matched_count,
        "modifiedCount": result.modified_count,
    }


def delete_result(result) -> dict:
    return {"acknowledged": result.acknowledged, "deletedCount": result.deleted_count}
