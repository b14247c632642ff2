# ─────────────────────────────────────────────────────────────────────────────
# Broker Context — owns the pooled Redis client for the whole process
# ─────────────────────────────────────────────────────────────────────────────
# Created in the lifespan, injected into every queue, closed on shutdown.
# ─────────────────────────────────────────────────────────────────────────────


import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from dispatcher.config import Settings

logger = structlog.get_logger(__name__)


class BrokerContext:
    """Single connection pool shared by every model queue and listener."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._client: aioredis.Redis | None = None

    @property
    def client(self) -> aioredis.Redis:
        """The live client. Raises RuntimeError before connect() / after close()."""
        if self._client is None:
            raise RuntimeError("BrokerContext is not connected")
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Build the connection pool. Does not fail if Redis is down yet."""
        if self._client is not None:
            return
        s = self._settings
        pool = aioredis.ConnectionPool(
            host=s.redis_host,
            port=s.redis_port,
            db=s.redis_db,
            password=s.redis_password.get_secret_value() or None,
            decode_responses=True,
            max_connections=s.redis_max_connections,
            socket_connect_timeout=s.redis_socket_timeout_seconds,
            # Blocking XREAD calls hold a socket open, so no read timeout here.
            health_check_interval=30,
        )
        self._client = aioredis.Redis(connection_pool=pool)
        logger.info(
            "broker_pool_created",
            host=s.redis_host,
            port=s.redis_port,
            db=s.redis_db,
            max_connections=s.redis_max_connections,
        )

    async def ping(self) -> bool:
        """True if the broker answers PING."""
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as e:
            logger.warning("broker_ping_failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the client and release every pooled connection."""
        if self._client is None:
            return
        client, self._client = self._client, None
        await client.aclose(close_connection_pool=True)
        logger.info("broker_pool_closed")
