"""
Database utility abstractions for MongoDB operations
"""

import logging
from typing import Optional, Dict, Any, List, AsyncGenerator
from datetime import datetime, date
from enum import Enum
from contextlib import asynccontextmanager

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorCollection
from pydantic import BaseModel
from pymongo.errors import AutoReconnect, NetworkTimeout
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import get_database_config, get_retry_config, DatabaseConfig, RetryConfig

logger = logging.getLogger(__name__)


TRANSIENT_ERRORS = (AutoReconnect, NetworkTimeout)


def to_document(model: BaseModel) -> Dict[str, Any]:
    """Dump a pydantic model into a BSON-encodable dict"""
    return _bsonify(model.model_dump())


def _bsonify(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        # BSON has no date-only type
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _bsonify(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_bsonify(item) for item in value]
    return value


class DatabaseManager:
    """
    Centralized database connection and operation manager.
    Provides a single point for database connections and common operations.
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config or get_database_config()
        self._client: Optional[AsyncIOMotorClient] = None
        self._database: Optional[AsyncIOMotorDatabase] = None
        self._collections: Dict[str, AsyncIOMotorCollection] = {}
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize database connection and collections"""
        if self._initialized:
            return

        logger.info(f"Initializing database connection to {self.config.uri}")

        try:
            self._client = AsyncIOMotorClient(
                self.config.uri,
                maxPoolSize=self.config.max_pool_size,
                minPoolSize=self.config.min_pool_size,
                maxIdleTimeMS=self.config.max_idle_time_ms,
                serverSelectionTimeoutMS=self.config.server_selection_timeout_ms,
                tz_aware=True
            )

            # Test connection
            await self._client.admin.command('ping')
            logger.info("Database connection established successfully")

            self._database = self._client[self.config.name]

            await self._setup_collections()

            self._initialized = True
            logger.info("Database manager initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    async def _setup_collections(self) -> None:
        """Setup database collections with proper indexes"""
        logger.info("Setting up database collections and indexes...")

        self._collections = {
            "patient_identities": self._database[self.config.identities_collection],
            "identity_audit": self._database[self.config.identity_audit_collection],
            "duplicate_cases": self._database[self.config.duplicate_cases_collection],
            "collision_alerts": self._database[self.config.collision_alerts_collection],
            "identity_checks": self._database[self.config.identity_checks_collection],
            "wristbands": self._database[self.config.wristbands_collection],
            "qualification_requests": self._database[self.config.qualification_requests_collection],
            "identity_audits": self._database[self.config.audits_collection],
        }

        await self._create_indexes()

    async def _create_indexes(self) -> None:
        """Create all necessary database indexes"""
        try:
            identities = self._collections["patient_identities"]
            await identities.create_index([("id", 1)], unique=True)
            await identities.create_index([("local_id", 1)], unique=True)
            await identities.create_index([("national_id.value", 1)], sparse=True)
            await identities.create_index([("quality_score", 1)])
            await identities.create_index([("status", 1), ("merged_into", 1)])

            # Duplicate search keys
            await identities.create_index([("match_keys.birth_date", 1), ("merged_into", 1)])
            await identities.create_index([("match_keys.family_name", 1), ("merged_into", 1)])

            audit = self._collections["identity_audit"]
            await audit.create_index([("identity_id", 1)])
            await audit.create_index([("timestamp", -1)])

            cases = self._collections["duplicate_cases"]
            await cases.create_index([("id", 1)], unique=True)
            await cases.create_index([("primary_identity_id", 1), ("status", 1)])
            await cases.create_index([("secondary_identity_id", 1), ("status", 1)])

            alerts = self._collections["collision_alerts"]
            await alerts.create_index([("id", 1)], unique=True)
            await alerts.create_index([("identity_id", 1), ("status", 1)])

            checks = self._collections["identity_checks"]
            await checks.create_index([("id", 1)], unique=True)
            await checks.create_index([("encounter_id", 1), ("checked_at", -1)])
            await checks.create_index([("identity_id", 1), ("checked_at", -1)])

            wristbands = self._collections["wristbands"]
            await wristbands.create_index([("id", 1)], unique=True)
            await wristbands.create_index([("identity_id", 1), ("encounter_id", 1), ("status", 1)])

            requests = self._collections["qualification_requests"]
            await requests.create_index([("id", 1)], unique=True)
            await requests.create_index([("status", 1), ("requested_at", 1)])

            audits = self._collections["identity_audits"]
            await audits.create_index([("id", 1)], unique=True)
            await audits.create_index([("status", 1), ("audit_date", -1)])

            logger.info("Database indexes created successfully")

        except Exception as e:
            logger.error(f"Failed to create database indexes: {e}")
            raise

    async def cleanup(self) -> None:
        """Cleanup database connections"""
        if self._client:
            self._client.close()
            self._initialized = False
            logger.info("Database connections closed")

    @property
    def database(self) -> AsyncIOMotorDatabase:
        """Get the database instance"""
        if not self._initialized:
            raise RuntimeError("Database manager not initialized. Call initialize() first.")
        return self._database

    def get_collection(self, name: str) -> AsyncIOMotorCollection:
        """Get a collection by name"""
        if not self._initialized:
            raise RuntimeError("Database manager not initialized. Call initialize() first.")

        if name in self._collections:
            return self._collections[name]

        return self._database[name]

    async def health_check(self) -> Dict[str, Any]:
        """Perform database health check"""
        try:
            if not self._initialized:
                return {"status": "error", "message": "Database not initialized"}

            await self._client.admin.command('ping')
            stats = await self._database.command("dbStats")

            return {
                "status": "healthy",
                "database": self.config.name,
                "collections": stats.get("collections", 0),
                "objects": stats.get("objects", 0),
            }

        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {
                "status": "unhealthy",
                "error": str(e)
            }

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator:
        """
        Run a block inside a multi-document transaction.
        Requires a replica set or sharded cluster.
        """
        if not self._initialized:
            raise RuntimeError("Database manager not initialized. Call initialize() first.")

        async with await self._client.start_session() as session:
            async with session.start_transaction():
                yield session


class BaseRepository:
    """
    Base repository class providing common database operations.
    Reads and single-document writes are retried on transient errors.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        collection_name: str,
        retry_config: Optional[RetryConfig] = None
    ):
        self.db_manager = db_manager
        self.collection_name = collection_name
        self.retry_config = retry_config or get_retry_config()

    @property
    def collection(self) -> AsyncIOMotorCollection:
        """Get the collection for this repository"""
        return self.db_manager.get_collection(self.collection_name)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            stop=stop_after_attempt(self.retry_config.attempts),
            wait=wait_exponential(
                multiplier=self.retry_config.wait_base_seconds,
                max=self.retry_config.wait_max_seconds
            ),
            reraise=True
        )

    async def find_one(self, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Find a single document"""
        try:
            async for attempt in self._retrying():
                with attempt:
                    return await self.collection.find_one(filter_dict, {"_id": 0})
        except Exception as e:
            logger.error(f"Error in find_one for {self.collection_name}: {e}")
            raise

    async def find_many(
        self,
        filter_dict: Dict[str, Any],
        sort: Optional[List[tuple]] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Find multiple documents"""
        try:
            async for attempt in self._retrying():
                with attempt:
                    cursor = self.collection.find(filter_dict, {"_id": 0})
                    if sort:
                        cursor = cursor.sort(sort)
                    if limit:
                        cursor = cursor.limit(limit)
                    return await cursor.to_list(length=limit)
        except Exception as e:
            logger.error(f"Error in find_many for {self.collection_name}: {e}")
            raise

    async def insert_one(self, document: Dict[str, Any]) -> None:
        """Insert a single document"""
        try:
            async for attempt in self._retrying():
                with attempt:
                    # insert_one adds _id to the dict it is given
                    await self.collection.insert_one(dict(document))
        except Exception as e:
            logger.error(f"Error in insert_one for {self.collection_name}: {e}")
            raise

    async def replace_versioned(
        self,
        document: Dict[str, Any],
        expected_version: int,
        session=None
    ) -> bool:
        """
        Replace the document with the same ``id`` only if its stored version
        is still ``expected_version``. Returns False on a version conflict.
        """
        document = dict(document)
        document["version"] = expected_version + 1
        try:
            result = await self.collection.replace_one(
                {"id": document["id"], "version": expected_version},
                document,
                session=session
            )
            return result.matched_count == 1
        except Exception as e:
            logger.error(f"Error in replace_versioned for {self.collection_name}: {e}")
            raise

    async def count_documents(self, filter_dict: Optional[Dict[str, Any]] = None) -> int:
        """Count documents matching the filter"""
        try:
            async for attempt in self._retrying():
                with attempt:
                    return await self.collection.count_documents(filter_dict or {})
        except Exception as e:
            logger.error(f"Error in count_documents for {self.collection_name}: {e}")
            raise
