import logging
from dataclasses import dataclass
from typing import Any, TypeAlias

from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.asynchronous.mongo_client import AsyncMongoClient
from pymongo.errors import PyMongoError, ServerSelectionTimeoutError

from carenotify.domain.exceptions import InfrastructureError
from carenotify.settings import Settings

MongoDocument: TypeAlias = dict[str, Any]
DBClient: TypeAlias = AsyncMongoClient[MongoDocument]
Database: TypeAlias = AsyncDatabase[MongoDocument]
Collection: TypeAlias = AsyncCollection[MongoDocument]


class DatabaseUnavailableError(InfrastructureError):
    """The notification store was used before ``connect()`` or after ``disconnect()``."""

    def __init__(self) -> None:
        super().__init__("Notification store is not connected")


@dataclass(frozen=True)
class DatabaseConfig:
    mongodb_url: str
    db_name: str
    server_selection_timeout_ms: int = 5000
    connect_timeout_ms: int = 10000
    # Delivery loops and API handlers share one pool
    max_pool_size: int = 50
    min_pool_size: int = 5
    # Queue leases and delivery transitions are conditional single-document writes
    write_concern: str = "majority"

    @classmethod
    def from_settings(cls, settings: Settings) -> "DatabaseConfig":
        return cls(mongodb_url=settings.MONGODB_URL, db_name=settings.DATABASE_NAME)


class AsyncDatabaseConnection:
    """Owns the Mongo client for the notification, queue and analytics collections."""

    __slots__ = ("_client", "_database", "_config", "logger")

    def __init__(self, config: DatabaseConfig, logger: logging.Logger) -> None:
        self._config = config
        self._client: DBClient | None = None
        self._database: Database | None = None
        self.logger = logger

    async def connect(self) -> None:
        """Open the client and ping the server; a second call is a no-op.

        Raises:
            ServerSelectionTimeoutError: If the server cannot be reached
        """
        if self._client is not None:
            return

        self.logger.info(f"Connecting to notification store: {self._config.db_name}")
        # tz_aware so stored datetimes compare with the UTC clock
        client: DBClient = AsyncMongoClient(
            self._config.mongodb_url,
            tz_aware=True,
            serverSelectionTimeoutMS=self._config.server_selection_timeout_ms,
            connectTimeoutMS=self._config.connect_timeout_ms,
            maxPoolSize=self._config.max_pool_size,
            minPoolSize=self._config.min_pool_size,
            retryWrites=True,
            w=self._config.write_concern,
        )
        try:
            await client.admin.command("ping")
        except ServerSelectionTimeoutError as e:
            self.logger.error(f"Notification store unreachable: {e}")
            await client.close()
            raise

        self._client = client
        self._database = client[self._config.db_name]
        self.logger.info("Connected to notification store")

    async def disconnect(self) -> None:
        if self._client is None:
            return
        self.logger.info("Closing notification store connection")
        await self._client.close()
        self._client = None
        self._database = None

    async def ping(self) -> bool:
        """True when connected and the server answers; used by the readiness check."""
        if self._client is None:
            return False
        try:
            await self._client.admin.command("ping")
        except PyMongoError as e:
            self.logger.warning(f"Notification store ping failed: {e}")
            return False
        return True

    @property
    def database(self) -> Database:
        if self._database is None:
            raise DatabaseUnavailableError()
        return self._database
