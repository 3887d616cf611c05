# app/services/infrastructure/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class StoreUnavailableError(Exception):
    """Raised when the shared store is unreachable or an operation times out."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class FastRedisClient:
    """
    Pooled Redis access for every piece of shared state (visitors, limits, jobs).

    Unlike a cache, nothing here may silently degrade: every failure is
    logged and re-raised as StoreUnavailableError so each caller can pick
    its own policy (limiters fail open, the job pipeline surfaces it).

    The sliding window records a timestamp only for allowed requests, so a
    client hammering a full window is not kept locked out by its own denied
    attempts. Denials are still counted as violations by the rate limiter.
    """

    # Evict, count, insert, expire as one unit per identifier.
    # Returns: {allowed (0 or 1), count before insert, oldest score or 0}
    SLIDING_WINDOW_LUA_SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local window_seconds = tonumber(ARGV[2])
    local current_time = tonumber(ARGV[3])
    local member = ARGV[4]
    local ttl_seconds = tonumber(ARGV[5])

    redis.call('ZREMRANGEBYSCORE', key, '-inf', current_time - window_seconds)

    local current_count = redis.call('ZCARD', key)

    local oldest = 0
    local oldest_entries = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    if #oldest_entries > 0 then
        oldest = oldest_entries[2]
    end

    if current_count >= limit then
        return {0, current_count, oldest}
    end

    redis.call('ZADD', key, current_time, member)
    redis.call('EXPIRE', key, ttl_seconds)

    return {1, current_count, oldest}
    """

    def __init__(self):
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            logger.info("Attempting Redis connection", url_preview=settings.REDIS_URL[:30] + "...")

            self.pool = ConnectionPool.from_url(
                settings.REDIS_URL,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
                retry_on_timeout=True,
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
                socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
                health_check_interval=30,
                decode_responses=True,
            )

            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info(
                "Fast Redis client initialized successfully",
                max_connections=settings.REDIS_MAX_CONNECTIONS,
            )

        except Exception as e:
            logger.error("Failed to initialize fast Redis client", error=str(e))
            self._initialized = False
            raise StoreUnavailableError("Redis initialization failed", operation="INIT") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Fast Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        """Ensure Redis is initialized, attempting a lazy connect otherwise"""
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()

    def _store_error(self, operation: str, key: str, error: Exception) -> StoreUnavailableError:
        logger.error(
            f"Redis {operation} failed",
            key=key[:40],
            error=str(error),
            error_type=type(error).__name__,
        )
        return StoreUnavailableError(f"Redis {operation} failed: {error}", operation=operation)

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            result = await self.client.ping()
            return bool(result)
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def get(self, key: str) -> str | None:
        try:
            await self._ensure_initialized()
            return await self.client.get(key)
        except RedisError as e:
            raise self._store_error("GET", key, e) from e

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        """Set value, with a relative TTL when given"""
        try:
            await self._ensure_initialized()
            if ttl_s:
                result = await self.client.setex(key, ttl_s, value)
            else:
                result = await self.client.set(key, value)
            return bool(result)
        except RedisError as e:
            raise self._store_error("SET", key, e) from e

    async def set_with_expire_at(self, key: str, value: str, expire_at: int) -> bool:
        """Set value expiring at an absolute unix timestamp (the TTL is never extended)"""
        try:
            await self._ensure_initialized()
            result = await self.client.set(key, value, exat=expire_at)
            return bool(result)
        except RedisError as e:
            raise self._store_error("SET EXAT", key, e) from e

    async def set_if_absent(self, key: str, value: str, ttl_s: int) -> bool:
        """SET NX EX; True when this call created the key"""
        try:
            await self._ensure_initialized()
            result = await self.client.set(key, value, ex=ttl_s, nx=True)
            return bool(result)
        except RedisError as e:
            raise self._store_error("SET NX", key, e) from e

    async def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed"""
        try:
            await self._ensure_initialized()
            return int(await self.client.delete(*keys))
        except RedisError as e:
            raise self._store_error("DELETE", ",".join(keys), e) from e

    async def exists(self, key: str) -> bool:
        try:
            await self._ensure_initialized()
            result = await self.client.exists(key)
            return result > 0
        except RedisError as e:
            raise self._store_error("EXISTS", key, e) from e

    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds (-2 when missing, -1 when no expiry)"""
        try:
            await self._ensure_initialized()
            return int(await self.client.ttl(key))
        except RedisError as e:
            raise self._store_error("TTL", key, e) from e

    async def incr(self, key: str) -> int:
        try:
            await self._ensure_initialized()
            return int(await self.client.incr(key))
        except RedisError as e:
            raise self._store_error("INCR", key, e) from e

    async def expire(self, key: str, ttl_s: int) -> bool:
        try:
            await self._ensure_initialized()
            return bool(await self.client.expire(key, ttl_s))
        except RedisError as e:
            raise self._store_error("EXPIRE", key, e) from e

    async def push_to_list(self, key: str, value: str, left: bool = False) -> int:
        """
        Push a value onto a Redis list used as a FIFO queue.

        Producers RPUSH and consumers BLPOP, so the default is a right push.
        """
        try:
            await self._ensure_initialized()
            if left:
                return int(await self.client.lpush(key, value))
            return int(await self.client.rpush(key, value))
        except RedisError as e:
            raise self._store_error("LIST push", key, e) from e

    async def pop_from_list(self, key: str, timeout: int = 0) -> str | None:
        """
        Pop the head of a Redis list (supports blocking pops).

        Args:
            key: Redis list key
            timeout: Seconds to wait for BLPOP; zero pops immediately.

        Returns:
            The popped value, or None when the list stayed empty.
        """
        try:
            await self._ensure_initialized()
            if timeout > 0:
                result = await self.client.blpop([key], timeout=timeout)
                if not result:
                    return None
                _, payload = result
                return payload
            return await self.client.lpop(key)
        except RedisError as e:
            raise self._store_error("LIST pop", key, e) from e

    async def list_length(self, key: str) -> int:
        try:
            await self._ensure_initialized()
            return int(await self.client.llen(key))
        except RedisError as e:
            raise self._store_error("LLEN", key, e) from e

    async def sliding_window_hit(
        self,
        key: str,
        limit: int,
        window_seconds: int,
        now: float,
        member: str,
        ttl_s: int,
    ) -> tuple[bool, int, float]:
        """
        Atomically record a hit in a sorted-set sliding window.

        Returns:
            (allowed, count before this hit, score of the oldest entry or 0)
        """
        try:
            await self._ensure_initialized()
            result = await self.client.eval(
                self.SLIDING_WINDOW_LUA_SCRIPT,
                1,
                key,
                limit,
                window_seconds,
                now,
                member,
                ttl_s,
            )
            return bool(int(result[0])), int(result[1]), float(result[2] or 0)
        except RedisError as e:
            raise self._store_error("EVAL sliding window", key, e) from e

    async def count_in_window(self, key: str, window_start: float, window_end: float) -> int:
        try:
            await self._ensure_initialized()
            return int(await self.client.zcount(key, window_start, window_end))
        except RedisError as e:
            raise self._store_error("ZCOUNT", key, e) from e


# Global instance
fast_redis = FastRedisClient()
