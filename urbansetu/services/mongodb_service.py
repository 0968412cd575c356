import asyncio
import logging
from typing import Optional

import motor.motor_asyncio
from pymongo.errors import PyMongoError

from urbansetu.core.config import get_settings

logger = logging.getLogger(__name__)

# Global database connection
client: Optional[motor.motor_asyncio.AsyncIOMotorClient] = None
db = None
fs = None


async def init_db() -> bool:
    """Connect to MongoDB with retries. Returns False instead of raising so
    the app can start in fallback (in-memory) mode."""
    global client, db, fs
    settings = get_settings()
    mongo_uri, db_name = settings.mongo_uri, settings.mongo_db_name

    logger.info(f"🔄 Attempting to connect to MongoDB ({'Atlas Cloud' if 'mongodb+srv' in mongo_uri else 'Local/Self-hosted'})...")
    try:
        client = motor.motor_asyncio.AsyncIOMotorClient(
            mongo_uri,
            serverSelectionTimeoutMS=settings.mongo_timeout_ms,
            connectTimeoutMS=settings.mongo_timeout_ms,
            socketTimeoutMS=settings.mongo_timeout_ms * 2,
            maxPoolSize=20,
            retryWrites=True,
        )

        max_retries = 3 if settings.env != "production" else 5
        retry_delay = 1.0
        for attempt in range(1, max_retries + 1):
            try:
                await asyncio.wait_for(client.admin.command("ping"), timeout=settings.mongo_timeout_ms / 1000)
                logger.info(f"✅ MongoDB ping successful on attempt {attempt}")
                break
            except (asyncio.TimeoutError, PyMongoError) as e:
                logger.warning(f"⚠️ Connection attempt {attempt}/{max_retries} failed: {e}")
                if attempt == max_retries:
                    raise
                await asyncio.sleep(retry_delay)
                retry_delay *= 2

        db = client[db_name]
        fs = motor.motor_asyncio.AsyncIOMotorGridFSBucket(db, bucket_name=settings.image_bucket)
        await create_indexes()
        logger.info(f"✅ Successfully connected to MongoDB database: {db_name}")
        return True

    except Exception as e:
        logger.error(f"❌ Failed to connect to MongoDB: {e}")
        if "authentication failed" in str(e).lower():
            logger.error("💡 Check the MongoDB username and password in the connection string")
        logger.warning("⚠️ Continuing without MongoDB - complaints are kept in memory only")
        if client is not None:
            client.close()
        client = None
        db = None
        fs = None
        return False


async def create_indexes() -> None:
    """Indexes behind the repository's queries."""
    if db is None:
        raise RuntimeError("Database is not initialized for index creation")

    try:
        complaints = db["complaints"]
        await complaints.create_index([("created_at", -1)], name="created_desc")
        await complaints.create_index([("user_id", 1), ("created_at", -1)], name="user_created")
        await complaints.create_index([("status", 1), ("created_at", -1)], name="status_created")
        await complaints.create_index([("category", 1)], name="category")
        await complaints.create_index([("department", 1)], name="department")
        await db["users"].create_index([("email", 1)], name="email_unique", unique=True)
        logger.info("📇 Database indexes created/verified successfully")
    except PyMongoError as e:
        # 85 = IndexOptionsConflict, an existing index with other options
        if getattr(e, "code", None) == 85:
            logger.warning(f"⚠️ Index conflict ignored (likely pre-existing): {e}")
        else:
            logger.warning(f"⚠️ Index creation encountered an issue: {e}")


async def close_db():
    global client, db, fs
    if client:
        client.close()
        logger.info("🔒 MongoDB connection closed")
    client = None
    db = None
    fs = None


def get_db():
    return db


def get_fs():
    return fs
