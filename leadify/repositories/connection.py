"""
MongoDB Connection Management
Singleton Motor client with connection pooling and lifecycle management.
"""
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError
from typing import Optional
from ..config import get_settings
from ..utils.observability import logger

CONVERSATIONS = "conversations"
TOKEN_USAGE = "token_usage"
LEADS = "leads"
AGENT_CONFIGS = "agent_configs"


class DatabaseManager:
    """
    Singleton MongoDB client manager with async Motor.
    Handles connection lifecycle, pooling, and graceful shutdown.
    """

    _instance: Optional["DatabaseManager"] = None
    _client: Optional[AsyncIOMotorClient] = None
    _database: Optional[AsyncIOMotorDatabase] = None

    def __new__(cls) -> "DatabaseManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def connect(self) -> None:
        """
        Open the client with the configured pool settings.
        Idempotent: a healthy existing client is reused.
        """
        settings = get_settings()
        if self._client:
            try:
                await self._client.admin.command("ping")
                logger.debug("Reusing healthy MongoDB connection")
                return
            except (RuntimeError, PyMongoError):
                logger.warning("Event loop closed or connection lost. Rebuilding client...")
                self._client = None
                self._database = None

        logger.info(
            f"Connecting to MongoDB at {settings.mongodb_uri}",
            extra={
                "database": settings.mongodb_database,
                "max_pool_size": settings.mongodb_max_pool_size,
                "environment": settings.environment
            }
        )
        self._client = AsyncIOMotorClient(
            settings.mongodb_uri,
            maxPoolSize=settings.mongodb_max_pool_size,
            minPoolSize=settings.mongodb_min_pool_size,
            serverSelectionTimeoutMS=settings.mongodb_server_selection_timeout_ms,
            tz_aware=True,
        )
        self._database = self._client[settings.mongodb_database]

    async def disconnect(self) -> None:
        if self._client is None:
            logger.debug("MongoDB client already disconnected")
            return

        logger.info("Closing MongoDB connection")
        self._client.close()
        self._client = None
        self._database = None
        logger.info("MongoDB connection closed")

    @property
    def database(self) -> AsyncIOMotorDatabase:
        """
        Raises:
            RuntimeError: If not connected
        """
        if self._database is None:
            raise RuntimeError(
                "Database not connected. Call await db_manager.connect() first."
            )
        return self._database

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.warning(f"MongoDB ping failed: {e}")
            return False

    async def create_indexes(self) -> None:
        """
        Create all required indexes. Called at application startup and by
        setup_mongodb.py.
        """
        db = self.database

        logger.info("Creating MongoDB indexes")

        # One document per conversation; commit relies on this for the archived check
        await db[CONVERSATIONS].create_index(
            "conversation_id", unique=True, name="idx_conversation_id_unique"
        )
        await db[CONVERSATIONS].create_index(
            [("agent_id", 1), ("updated_at", -1)], name="idx_agent_updated"
        )

        # Ledger: idempotent appends and the dashboard query shapes
        await db[TOKEN_USAGE].create_index("record_id", unique=True, name="idx_record_id_unique")
        await db[TOKEN_USAGE].create_index("created_at", name="idx_created_at")
        await db[TOKEN_USAGE].create_index(
            [("agent_id", 1), ("created_at", -1)], name="idx_agent_created"
        )
        await db[TOKEN_USAGE].create_index(
            [("operation_type", 1), ("created_at", -1)], name="idx_operation_created"
        )
        await db[TOKEN_USAGE].create_index("conversation_id", name="idx_usage_conversation", sparse=True)

        await db[LEADS].create_index(
            [("conversation_id", 1), ("qualification_round", 1)],
            unique=True,
            name="idx_lead_conversation_round_unique"
        )
        await db[LEADS].create_index([("agent_id", 1), ("tier", 1)], name="idx_lead_agent_tier")

        await db[AGENT_CONFIGS].create_index("agent_id", unique=True, name="idx_agent_id_unique")
        await db[AGENT_CONFIGS].create_index("organization_id", name="idx_organization")

        logger.info("MongoDB indexes created successfully")


# Singleton instance
db_manager = DatabaseManager()


async def get_database() -> AsyncIOMotorDatabase:
    return db_manager.database
