import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from trustgate.core.config import settings

logger = logging.getLogger(__name__)


class MongoDB:
    client: AsyncIOMotorClient = None

mongodb = MongoDB()


async def get_database() -> AsyncIOMotorDatabase:
    return mongodb.client[settings.MONGO_DB_NAME]


# Called on startup
async def connect_to_mongo():
    mongodb.client = AsyncIOMotorClient(settings.MONGO_URI)
    logger.info("Connected to MongoDB at %s", settings.MONGO_URI)


# Called on shutdown
async def close_mongo_connection():
    if mongodb.client is not None:
        mongodb.client.close()
        mongodb.client = None
    logger.info("MongoDB connection closed")


async def ensure_indexes(db: AsyncIOMotorDatabase):
    """Create the trusted_devices indexes (run at startup)"""
    await db.trusted_devices.create_index([
        ("owner_id", ASCENDING),
        ("owner_type", ASCENDING),
        ("device_fingerprint", ASCENDING),
        ("created_at", DESCENDING),
    ])
    await db.trusted_devices.create_index([
        ("owner_id", ASCENDING),
        ("owner_type", ASCENDING),
        ("created_at", DESCENDING),
    ])
    await db.trusted_devices.create_index([("expires_at", ASCENDING)])
