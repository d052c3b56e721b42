"""
Database Helper Functions

MongoDB helper functions ready to use in your backend code.
Import and use these functions in your API endpoints for database operations.
"""

import os
from datetime import datetime, timezone
from typing import Union

from bson import ObjectId
from dotenv import load_dotenv
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from errors import NotFound

# Load environment variables from .env file
load_dotenv()

_client = None
db = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

if database_url and database_name:
    _client = MongoClient(database_url)
    db = _client[database_name]


def get_db():
    """FastAPI dependency returning the active database handle."""
    if db is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """MongoDB hands back naive datetimes; they are always UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_object_id(value: str, what: str) -> ObjectId:
    if not ObjectId.is_valid(value):
        raise NotFound(what)
    return ObjectId(value)


# Helper functions for common database operations
def create_document(collection_name: str, data: Union[BaseModel, dict], database=None) -> str:
    """Insert a single document with timestamps and return its id as a string"""
    target = database if database is not None else db
    if target is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    # Convert Pydantic model to dict if needed
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    now = datetime.now(timezone.utc)
    data_dict["created_at"] = now
    data_dict["updated_at"] = now

    result = target[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def ensure_indexes(database) -> None:
    """Create the unique and lookup indexes the store relies on."""
    for family in ("generator", "part"):
        database[family].create_index("slug", unique=True)
        database[family].create_index([("is_active", ASCENDING), ("created_at", DESCENDING)])
    database["coupon"].create_index("code", unique=True)
    database["couponusage"].create_index([("coupon_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
    database["order"].create_index("order_number", unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["servicerequest"].create_index("request_number", unique=True)
    database["setting"].create_index([("group", ASCENDING), ("key", ASCENDING)], unique=True)
    database["cart"].create_index("user_id", unique=True)
    database["wishlistitem"].create_index(
        [("user_id", ASCENDING), ("item_type", ASCENDING), ("product_id", ASCENDING)], unique=True
    )
    database["review"].create_index(
        [("user_id", ASCENDING), ("item_type", ASCENDING), ("product_id", ASCENDING)], unique=True
    )
    database["notification"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["auditlog"].create_index([("entity", ASCENDING), ("created_at", DESCENDING)])
