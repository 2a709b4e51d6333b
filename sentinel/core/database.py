# 🗄️ Database Connection Utilities
# MongoDB connection management for the visits and threats collections

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import PyMongoError

from sentinel.core.config import Settings

logger = logging.getLogger(__name__)


class MongoDatabase:
    """
    Owns the motor client and hands out the two append-only collections
    the recorders write to and the aggregators read from.
    """

    def __init__(self, settings: Settings):
        self.mongo_uri = settings.mongo_uri
        self.db_name = settings.mongodb_name
        self.collection_names = {
            "visits": settings.visits_collection,
            "threats": settings.threats_collection,
        }
        self.client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None

        # Every read filters on a timestamp range, burst checks also on ip
        self.index_definitions = {
            "visits": [
                IndexModel([("ip", ASCENDING), ("timestamp", DESCENDING)]),
                IndexModel([("timestamp", DESCENDING)]),
            ],
            "threats": [
                IndexModel([("ip", ASCENDING), ("timestamp", DESCENDING)]),
                IndexModel([("timestamp", DESCENDING)]),
            ],
        }

    async def connect(self) -> bool:
        """
        Establish the MongoDB connection and make sure indexes exist.

        Returns:
            bool: True if connection successful, False otherwise
        """
        try:
            self.client = AsyncIOMotorClient(
                self.mongo_uri,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=10000,
                socketTimeoutMS=20000,
                maxPoolSize=50,
                retryWrites=True,
                tz_aware=True,
            )
            await self.client.admin.command("ping")
            self.db = self.client[self.db_name]
            await self._create_indexes()
            logger.info(f"✅ MongoDB connection established (database: {self.db_name})")
            return True
        except PyMongoError as e:
            logger.error(f"❌ MongoDB connection failed: {e}")
            # Collections stay usable; writes are fail-silent and reads surface 500s
            if self.client is not None:
                self.db = self.client[self.db_name]
            return False

    async def disconnect(self):
        if self.client:
            self.client.close()
            self.client = None
            self.db = None
            logger.info("🔒 MongoDB connection closed")

    async def _create_indexes(self):
        try:
            for name, indexes in self.index_definitions.items():
                await self.collection(name).create_indexes(indexes)
                logger.info(f"📊 Ensured {len(indexes)} indexes for {self.collection_names[name]} collection")
        except PyMongoError as e:
            logger.error(f"❌ Failed to create indexes: {e}")

    def collection(self, name: str) -> AsyncIOMotorCollection:
        if self.db is None:
            raise RuntimeError("MongoDB is not connected")
        return self.db[self.collection_names.get(name, name)]

    @property
    def visits(self) -> AsyncIOMotorCollection:
        return self.collection("visits")

    @property
    def threats(self) -> AsyncIOMotorCollection:
        return self.collection("threats")
