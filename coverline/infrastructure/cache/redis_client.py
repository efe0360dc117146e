"""
Redis Client with Connection Pooling

Architecture:
    RedisClient (Public API)
        ├── ConnectionManager (Connection lifecycle)
        ├── OperationExecutor (Command execution with error handling)
        └── HealthMonitor (Health checks and pool metrics)

Every Redis failure leaves this module as a CacheError subclass, so callers
handle one exception family regardless of what redis-py raised.

Author: Platform Team
Date: 2025-12-13
"""

import time
from typing import Any

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import ConnectionError, RedisError, TimeoutError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from coverline.core.config.constants import Stage
from coverline.core.config.settings import Settings, get_settings
from coverline.core.exceptions import CacheConnectionError, CacheKeyError
from coverline.core.logging.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# LAYER 1: CONNECTION MANAGEMENT
# Handles connection lifecycle and pooling
# =============================================================================


class ConnectionManager:
    """
    Manages Redis connection lifecycle and pooling.

    Responsibility: Connection establishment, pooling, and cleanup.

    Pool Configuration:
    - Max connections: REDIS_MAX_CONNECTIONS
    - Socket timeout: REDIS_SOCKET_TIMEOUT
    - Health check interval: REDIS_HEALTH_CHECK_INTERVAL
    - decode_responses=True (values come back as str)
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self._pool: ConnectionPool | None = None
        self._client: redis.Redis | None = None
        self._is_connected = False

    async def connect(self) -> redis.Redis:
        """
        Establish connection to Redis with connection pooling.

        STAGE-R.2: Connection establishment

        Raises:
            CacheConnectionError: If connection fails
        """
        if self._is_connected and self._client:
            return self._client

        redis_settings = self._settings.redis

        try:
            self._pool = ConnectionPool(
                host=redis_settings.REDIS_HOST,
                port=redis_settings.REDIS_PORT,
                db=redis_settings.REDIS_DB,
                password=redis_settings.REDIS_PASSWORD,
                max_connections=redis_settings.REDIS_MAX_CONNECTIONS,
                socket_connect_timeout=redis_settings.REDIS_SOCKET_CONNECT_TIMEOUT,
                socket_timeout=redis_settings.REDIS_SOCKET_TIMEOUT,
                retry_on_timeout=True,
                health_check_interval=redis_settings.REDIS_HEALTH_CHECK_INTERVAL,
                decode_responses=True,
            )
            self._client = redis.Redis(connection_pool=self._pool)

            # Verify the connection actually works
            await self._client.ping()
            self._is_connected = True

            logger.info(
                "Redis connected successfully",
                stage=Stage.REDIS.value,
                host=redis_settings.REDIS_HOST,
                port=redis_settings.REDIS_PORT,
                max_connections=redis_settings.REDIS_MAX_CONNECTIONS,
            )
            return self._client

        except (ConnectionError, TimeoutError, OSError) as e:
            logger.error("Failed to connect to Redis", stage=Stage.REDIS.value, error=str(e))
            await self.disconnect()
            raise CacheConnectionError(
                message=f"Failed to connect to Redis: {e}",
                details={
                    "host": redis_settings.REDIS_HOST,
                    "port": redis_settings.REDIS_PORT,
                },
            ) from e

    async def disconnect(self) -> None:
        """
        Close Redis client and pool.

        STAGE-R.3: Connection cleanup
        """
        if self._client:
            await self._client.aclose()

        if self._pool:
            await self._pool.disconnect()

        self._client = None
        self._pool = None
        self._is_connected = False

    async def ping(self) -> bool:
        """Return True if the server answers PING."""
        try:
            if self._client and self._is_connected:
                await self._client.ping()
                return True
        except (ConnectionError, TimeoutError):
            pass
        return False

    def get_client(self) -> redis.Redis | None:
        return self._client

    def get_pool(self) -> ConnectionPool | None:
        return self._pool

    def is_connected(self) -> bool:
        return self._is_connected


# =============================================================================
# LAYER 2: OPERATION EXECUTOR
# Executes Redis commands with error handling and logging
# =============================================================================


class OperationExecutor:
    """
    Executes Redis operations with consistent error handling.

    Error Handling Strategy:
    - Catch RedisError exceptions
    - Log error with context (stage, key)
    - Raise CacheKeyError with details, chained to the original
    """

    def __init__(self, redis_client: redis.Redis):
        self._redis = redis_client

    async def get_with_ttl(self, key: str) -> tuple[str | None, int]:
        """
        Fetch a value and its remaining TTL in one round trip.

        STAGE-R.GET: GET + PTTL pipeline

        Returns:
            (value, pttl) where pttl is milliseconds left, -1 for no expiry
            and -2 when the key does not exist
        """
        try:
            async with self._redis.pipeline(transaction=False) as pipe:
                pipe.get(key)
                pipe.pttl(key)
                value, pttl = await pipe.execute()
            return value, pttl
        except RedisError as e:
            logger.error("Redis GET failed", stage="R.GET", key=key, error=str(e))
            raise CacheKeyError(message=f"Redis GET failed: {e}", details={"key": key}) from e

    async def set(self, key: str, value: str, ttl_ms: int) -> bool:
        """
        Set value with a millisecond TTL.

        STAGE-R.SET: SET PX
        """
        try:
            result = await self._redis.set(key, value, px=ttl_ms)
            return result is not None
        except RedisError as e:
            logger.error("Redis SET failed", stage="R.SET", key=key, error=str(e))
            raise CacheKeyError(message=f"Redis SET failed: {e}", details={"key": key}) from e

    async def delete(self, *keys: str) -> int:
        """
        Delete keys.

        STAGE-R.DEL: DEL
        """
        try:
            return await self._redis.delete(*keys)
        except RedisError as e:
            logger.error("Redis DELETE failed", stage="R.DEL", keys=keys, error=str(e))
            raise CacheKeyError(message=f"Redis DELETE failed: {e}", details={"keys": keys}) from e

    async def delete_matching(self, pattern: str, batch_size: int = 500) -> int:
        """
        Delete every key matching a glob pattern.

        SCAN is used instead of KEYS so a large keyspace never blocks the
        server; keys are deleted in batches as they are discovered.
        """
        deleted = 0
        batch: list[str] = []
        try:
            async for key in self._redis.scan_iter(match=pattern, count=batch_size):
                batch.append(key)
                if len(batch) >= batch_size:
                    deleted += await self._redis.delete(*batch)
                    batch.clear()
            if batch:
                deleted += await self._redis.delete(*batch)
            return deleted
        except RedisError as e:
            logger.error("Redis SCAN/DEL failed", stage="R.SCAN", pattern=pattern, error=str(e))
            raise CacheKeyError(
                message=f"Redis SCAN/DEL failed: {e}", details={"pattern": pattern}
            ) from e


# =============================================================================
# LAYER 3: HEALTH MONITORING
# =============================================================================


class HealthMonitor:
    """
    Monitors Redis health and connection pool metrics.

    Metrics Tracked:
    - Connection status
    - Ping latency
    - Pool size
    """

    def __init__(self, connection_manager: ConnectionManager, settings: Settings):
        self._conn_mgr = connection_manager
        self._settings = settings

    async def health_check(self) -> dict[str, Any]:
        """
        Perform health check on the Redis connection.

        STAGE-R.HEALTH: Redis health check
        """
        health: dict[str, Any] = {
            "status": "healthy",
            "connected": self._conn_mgr.is_connected(),
            "host": self._settings.redis.REDIS_HOST,
            "port": self._settings.redis.REDIS_PORT,
            "pool_size": 0,
            "ping_latency_ms": None,
        }

        client = self._conn_mgr.get_client()
        if not client:
            health["status"] = "unhealthy"
            health["error"] = "Client not initialized"
            return health

        try:
            start = time.perf_counter()
            await client.ping()
            health["ping_latency_ms"] = round((time.perf_counter() - start) * 1000, 2)

            pool = self._conn_mgr.get_pool()
            if pool:
                health["pool_size"] = pool.max_connections
        except (RedisError, OSError) as e:
            health["status"] = "unhealthy"
            health["error"] = str(e)

        return health


# =============================================================================
# LAYER 4: PUBLIC API
# =============================================================================


class RedisClient:
    """
    Async Redis client with connection pooling and health checks.

    Usage:
        client = RedisClient()
        await client.connect()

        await client.set("key", "value", ttl_ms=60_000)
        value, pttl = await client.get_with_ttl("key")

        await client.disconnect()
    """

    def __init__(self, settings: Settings | None = None):
        """
        Initialize Redis client.

        STAGE-R.1: Client initialization
        """
        self._settings = settings or get_settings()
        self._conn_mgr = ConnectionManager(self._settings)
        self._executor: OperationExecutor | None = None
        self._health_monitor = HealthMonitor(self._conn_mgr, self._settings)

    async def connect(self) -> None:
        """
        Establish connection to Redis.

        Raises:
            CacheConnectionError: If connection fails
        """
        client = await self._conn_mgr.connect()
        self._executor = OperationExecutor(client)

    async def disconnect(self) -> None:
        await self._conn_mgr.disconnect()
        self._executor = None

    async def ping(self) -> bool:
        return await self._conn_mgr.ping()

    def is_connected(self) -> bool:
        return self._conn_mgr.is_connected()

    def _require_executor(self) -> OperationExecutor:
        if self._executor is None:
            raise CacheConnectionError("Redis client is not connected")
        return self._executor

    # -------------------------------------------------------------------------
    # Delegate to OperationExecutor
    # -------------------------------------------------------------------------

    async def get_with_ttl(self, key: str) -> tuple[str | None, int]:
        return await self._require_executor().get_with_ttl(key)

    async def set(self, key: str, value: str, ttl_ms: int) -> bool:
        return await self._require_executor().set(key, value, ttl_ms)

    async def delete(self, *keys: str) -> int:
        return await self._require_executor().delete(*keys)

    async def delete_matching(self, pattern: str) -> int:
        return await self._require_executor().delete_matching(pattern)

    async def health_check(self) -> dict[str, Any]:
        return await self._health_monitor.health_check()


# =============================================================================
# GLOBAL INSTANCE (SINGLETON PATTERN)
# =============================================================================

_redis_client: RedisClient | None = None


def get_redis_client() -> RedisClient:
    """Get the global Redis client instance (singleton)."""
    global _redis_client

    if _redis_client is None:
        _redis_client = RedisClient()

    return _redis_client


async def init_redis() -> RedisClient:
    """
    Initialize and connect the global Redis client.

    Connection attempts are retried with exponential backoff and jitter;
    the last CacheConnectionError is re-raised once attempts run out.
    """
    client = get_redis_client()
    attempts = max(1, client._settings.redis.REDIS_CONNECT_RETRIES)

    @retry(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential_jitter(initial=0.2, max=2.0),
        retry=retry_if_exception_type(CacheConnectionError),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            "Redis connect retry",
            stage=Stage.REDIS.value,
            attempt=retry_state.attempt_number,
            delay=round(retry_state.idle_for, 3),
        ),
    )
    async def _connect_with_retry() -> None:
        await client.connect()

    await _connect_with_retry()
    return client


async def close_redis() -> None:
    """Close the global Redis client."""
    global _redis_client

    if _redis_client:
        await _redis_client.disconnect()
        _redis_client = None
