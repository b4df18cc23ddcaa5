# backend/app/core/database.py

import logging
from typing import Optional, Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from app.core.config import settings

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


def _get_db_name_from_uri(uri: str) -> str:
    # A /dbname suffix on the URI wins over MONGODB_DB.
    after_slash = uri.split("://", 1)[-1]
    if "/" in after_slash:
        name = after_slash.split("/", 1)[1].split("?", 1)[0].strip()
        if name:
            return name
    return settings.MONGODB_DB or "condo_water"


async def connect_to_mongo() -> AsyncIOMotorDatabase:
    global _client, _db

    if _client is not None and _db is not None:
        return _db

    mongo_url = settings.get_mongo_uri()
    db_name = _get_db_name_from_uri(mongo_url)
    logger.info(f"Connecting to MongoDB (db={db_name})")

    _client = AsyncIOMotorClient(mongo_url)
    _db = _client[db_name]

    await _db.command("ping")
    logger.info("MongoDB connection OK")

    return _db


async def close_mongo_connection() -> None:
    global _client, _db
    if _client:
        _client.close()
    _client = None
    _db = None
    logger.info("MongoDB connection closed")


async def get_db() -> AsyncIOMotorDatabase:
    return await connect_to_mongo()


class _DBProxy:
    """Lets callers do: from app.core.database import db; await db.command("ping")"""

    def __getattr__(self, item: str) -> Any:
        if _db is None:
            raise RuntimeError("Database not initialized. Call connect_to_mongo() at startup.")
        return getattr(_db, item)


db = _DBProxy()


async def ensure_indexes() -> None:
    database = await connect_to_mongo()
    await database[settings.USERS_COLLECTION].create_index("username", unique=True, sparse=True)
    await database[settings.USERS_COLLECTION].create_index("email", unique=True, sparse=True)
    await database[settings.ROLES_COLLECTION].create_index("email", unique=True)
    # revoked tokens are dropped once the token would have expired anyway
    await database[settings.REVOKED_TOKENS_COLLECTION].create_index("expires_at", expireAfterSeconds=0)
