"""
Database Service for restbind.

Owns the motor client and hands out MotorModel handles for collections.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from motor.motor_asyncio import AsyncIOMotorClient

from restbind.store.mongo import MotorModel

if TYPE_CHECKING:
    from motor.motor_asyncio import AsyncIOMotorDatabase

logger = logging.getLogger(__name__)


class DatabaseService:
    """
    Service for accessing MongoDB collections.

    The client is created lazily on first use and closed on shutdown.

    Example:
        service = DatabaseService("mongodb://localhost:27017", "shop")
        items = service.model("items", schema=Item)
    """

    def __init__(
        self,
        mongodb_url: str,
        database_name: str = "restbind",
        *,
        client: AsyncIOMotorClient | None = None,
    ):
        """
        Initialize database service.

        Args:
            mongodb_url: MongoDB connection URL
            database_name: Database name
            client: Pre-built client (tests inject a mock here)
        """
        self._mongodb_url = mongodb_url
        self._database_name = database_name
        self._client = client
        self._db: AsyncIOMotorDatabase | None = None
        self._models: dict[str, MotorModel] = {}

    @property
    def database_name(self) -> str:
        return self._database_name

    @property
    def connected(self) -> bool:
        return self._db is not None

    def connect(self) -> None:
        """Create the client. motor connects lazily on the first operation."""
        if self._db is not None:
            return
        if self._client is None:
            self._client = AsyncIOMotorClient(self._mongodb_url)
        self._db = self._client[self._database_name]
        logger.info(f"Connected to MongoDB database: {self._database_name}")

    def close(self) -> None:
        """Close the MongoDB connection."""
        if self._client is not None:
            self._client.close()
            self._client = None
            self._db = None
            self._models.clear()
            logger.info("MongoDB connection closed")

    @property
    def database(self) -> "AsyncIOMotorDatabase":
        self.connect()
        if self._db is None:
            raise RuntimeError("MongoDB database is not available")
        return self._db

    def model(self, collection_name: str, **kwargs: Any) -> MotorModel:
        """
        Get the Model handle for ``collection_name``.

        Handles are cached per collection; keyword arguments (schema,
        refs, id_field) only apply on first creation.
        """
        if collection_name not in self._models:
            self._models[collection_name] = MotorModel.from_database(
                self.database, collection_name, **kwargs
            )
        return self._models[collection_name]

    async def ping(self) -> bool:
        """Check that the server answers."""
        try:
            await self.database.command("ping")
            return True
        except Exception as e:
            logger.warning(f"MongoDB ping failed: {e}")
            return False
