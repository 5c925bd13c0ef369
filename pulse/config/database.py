"""MongoDB database connection and management."""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from typing import Optional
from pulse.config.settings import settings
import logging

logger = logging.getLogger(__name__)


class Database:
    """MongoDB database connection manager."""

    client: Optional[AsyncIOMotorClient] = None
    database: Optional[AsyncIOMotorDatabase] = None

    @classmethod
    async def connect_db(cls):
        """Connect to MongoDB."""
        try:
            cls.client = AsyncIOMotorClient(settings.mongodb_uri, tz_aware=False)
            cls.database = cls.client[settings.mongodb_database]

            # Test connection
            await cls.client.admin.command("ping")
            logger.info(f"Connected to MongoDB: {settings.mongodb_database}")
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    @classmethod
    async def close_db(cls):
        """Close MongoDB connection."""
        if cls.client:
            cls.client.close()
            logger.info("Closed MongoDB connection")
        cls.client = None
        cls.database = None

    @classmethod
    def get_database(cls) -> AsyncIOMotorDatabase:
        """Get database instance."""
        if cls.database is None:
            raise RuntimeError("Database not initialized. Call connect_db() first.")
        return cls.database

    @classmethod
    def get_collection(cls, collection_name: str):
        """Get a collection from the database."""
        db = cls.get_database()
        return db[collection_name]


# Convenience functions
async def get_users_collection():
    """Get users collection."""
    return Database.get_collection(settings.mongodb_collection_users)


async def get_patients_collection():
    """Get patients collection."""
    return Database.get_collection(settings.mongodb_collection_patients)


async def get_chats_collection():
    """Get chats collection."""
    return Database.get_collection(settings.mongodb_collection_chats)


async def get_messages_collection():
    """Get messages collection."""
    return Database.get_collection(settings.mongodb_collection_messages)


async def get_escalations_collection():
    """Get escalations collection."""
    return Database.get_collection(settings.mongodb_collection_escalations)


async def get_audit_log_collection():
    """Get audit_log collection."""
    return Database.get_collection(settings.mongodb_collection_audit_log)


async def ensure_indexes():
    """Create the secondary indexes the services query through.

    The chats ``(patient_id, status)`` compound index backs the active-chat
    lookup. When ``chat_unique_active_index`` is set, a partial unique index
    additionally lets the server reject a second active chat for a patient.
    """
    users = await get_users_collection()
    await users.create_index("user_id", unique=True)
    await users.create_index([("role", ASCENDING), ("created_at", ASCENDING)])

    patients = await get_patients_collection()
    await patients.create_index("patient_id", unique=True)
    await patients.create_index("user_id")
    await patients.create_index("assigned_physician_id")

    chats = await get_chats_collection()
    await chats.create_index("chat_id", unique=True)
    await chats.create_index([("patient_id", ASCENDING), ("status", ASCENDING)])
    await chats.create_index("escalated_to")
    if settings.chat_unique_active_index:
        await chats.create_index(
            "patient_id",
            name="one_active_chat_per_patient",
            unique=True,
            partialFilterExpression={"status": "active"},
        )

    messages = await get_messages_collection()
    await messages.create_index([("chat_id", ASCENDING), ("timestamp", ASCENDING)])

    escalations = await get_escalations_collection()
    await escalations.create_index("escalation_id", unique=True)
    await escalations.create_index("chat_id")
    await escalations.create_index("patient_id")
    await escalations.create_index(
        [("physician_id", ASCENDING), ("created_at", DESCENDING)]
    )
    await escalations.create_index([("severity", ASCENDING), ("status", ASCENDING)])

    audit_log = await get_audit_log_collection()
    await audit_log.create_index([("user_id", ASCENDING), ("timestamp", DESCENDING)])
    await audit_log.create_index([("action", ASCENDING), ("timestamp", DESCENDING)])
    await audit_log.create_index(
        [("resource_type", ASCENDING), ("resource_id", ASCENDING)]
    )
    await audit_log.create_index([("timestamp", DESCENDING)])

    logger.info("MongoDB indexes ensured")
