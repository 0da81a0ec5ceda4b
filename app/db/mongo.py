import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from app.core.config import settings

logger = logging.getLogger(__name__)


class MongoDatabase:
    """MongoDB connection manager."""

    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

mongodb = MongoDatabase()

async def connect_to_mongo():
    """Connect to MongoDB."""
    mongodb.client = AsyncIOMotorClient(settings.MONGODB_URI, tz_aware=True)
    mongodb.db = mongodb.client[settings.MONGODB_DB]

    # Create indexes
    await create_indexes(mongodb.db)
    logger.info("Connected to MongoDB: %s", settings.MONGODB_DB)

async def close_mongo_connection():
    """Disconnect from MongoDB."""
    if mongodb.client is not None:
        mongodb.client.close()
        mongodb.client = None
        mongodb.db = None
    logger.info("Disconnected from MongoDB")

async def create_indexes(db: AsyncIOMotorDatabase):
    """Create database indexes."""
    # Default listing: filter on archive flag, newest first
    await db["invoices"].create_index([("is_archived", ASCENDING), ("created_at", DESCENDING)])
    await db["invoices"].create_index("invoice_number", unique=True)

    await db["invoice_lines"].create_index("invoice_id")

    await db["payments"].create_index([("invoice_id", ASCENDING), ("payment_date", DESCENDING)])

def get_db() -> AsyncIOMotorDatabase:
    """Get database instance."""
    return mongodb.db


@asynccontextmanager
async def start_transaction(
    db: AsyncIOMotorDatabase,
    enabled: Optional[bool] = None,
) -> AsyncIterator[Optional[AsyncIOMotorClientSession]]:
    """
    Yield a session with an open transaction, or None when transactions are
    disabled. Callers pass the yielded value as ``session=`` to every write.
    """
    if enabled is None:
        enabled = settings.MONGODB_USE_TRANSACTIONS
    if not enabled:
        yield None
        return

    async with await db.client.start_session() as session:
        async with session.start_transaction():
            yield session
