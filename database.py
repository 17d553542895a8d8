"""
MongoDB access.

`db` is the pymongo Database every module reads through `database.db`, so tests
can swap it for an in-memory client. It is None when DATABASE_URL is unset.
"""
import logging
from datetime import datetime, timezone

from pymongo import MongoClient

from config import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

db = None
if DATABASE_URL:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]
    logger.info("Connected to MongoDB database %s", DATABASE_NAME)


def utcnow() -> datetime:
    # pymongo hands back naive UTC datetimes, so store the same
    return datetime.now(timezone.utc).replace(tzinfo=None)


def ensure_indexes() -> None:
    if db is None:
        return
    db["user"].create_index("username", unique=True)
    db["shop_staff"].create_index([("shop_id", 1), ("user_id", 1)], unique=True)
    db["shop_chat"].create_index([("shop_id", 1), ("user_id", 1)], unique=True)
    db["product"].create_index("shop_id")
    db["review"].create_index("product_id")
    db["complaint_message"].create_index("complaint_id")
    db["shop_chat_message"].create_index("chat_id")
    db["session"].create_index("user_id")
