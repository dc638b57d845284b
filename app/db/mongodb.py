# mongodb.py

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING
from app.core.config import (
    MONGO_URI, MONGO_DB,
    COLLECTION_VEHICLES, COLLECTION_USERS, COLLECTION_DEPLOYMENTS,
    COLLECTION_MAINTENANCE, COLLECTION_HISTORY, COLLECTION_LOCKS,
)
from app.utiles.logger import get_logger

logger = get_logger(__name__)

# Global client and db instances
client = None
db = None


def get_db():
    """Return the active database handle."""
    if db is None:
        logger.error("Database is not initialized")
        raise RuntimeError("Database connection not established")
    return db


async def connect_to_mongo(mongo_client=None):
    """Connect to MongoDB when app starts.

    An already-configured client (tests swap in an in-memory one) is kept.
    """
    global client, db

    if mongo_client is not None:
        client = mongo_client
    if client is None:
        client = AsyncIOMotorClient(MONGO_URI)
    db = client[MONGO_DB]

    # Ensure indexes are created
    await ensure_indexes()

    logger.info("✅ MongoDB connection established")


async def close_mongo_connection():
    """Close MongoDB connection when app shuts down."""
    global client, db
    if client:
        client.close()
        logger.warning("⚠️ MongoDB connection closed")
    client = None
    db = None


async def ensure_indexes():
    """Create necessary indexes for collections."""
    # ---------------- Vehicles ----------------
    await db[COLLECTION_VEHICLES].create_index("vehicle_id", unique=True)
    await db[COLLECTION_VEHICLES].create_index("registration_number", unique=True)
    await db[COLLECTION_VEHICLES].create_index("status")

    # ---------------- Users (pilots) ----------------
    await db[COLLECTION_USERS].create_index("user_id", unique=True)
    await db[COLLECTION_USERS].create_index("role")

    # ---------------- Deployments ----------------
    await db[COLLECTION_DEPLOYMENTS].create_index("deployment_id", unique=True)
    await db[COLLECTION_DEPLOYMENTS].create_index([("vehicle_id", ASCENDING), ("status", ASCENDING)])
    await db[COLLECTION_DEPLOYMENTS].create_index([("pilot_id", ASCENDING), ("status", ASCENDING)])
    await db[COLLECTION_DEPLOYMENTS].create_index([("status", ASCENDING), ("start_time", ASCENDING)])

    # ---------------- Maintenance windows ----------------
    await db[COLLECTION_MAINTENANCE].create_index("maintenance_id", unique=True)
    await db[COLLECTION_MAINTENANCE].create_index([("vehicle_id", ASCENDING), ("status", ASCENDING)])
    await db[COLLECTION_MAINTENANCE].create_index([("status", ASCENDING), ("unavailable_from", ASCENDING)])

    # ---------------- History ----------------
    await db[COLLECTION_HISTORY].create_index("entry_id", unique=True)
    await db[COLLECTION_HISTORY].create_index([("parent_id", ASCENDING), ("recorded_at", ASCENDING)])

    # ---------------- Locks ----------------
    await db[COLLECTION_LOCKS].create_index("expires_at")

    logger.info("✅ Indexes ensured for vehicles, users, deployments, maintenance and history")
