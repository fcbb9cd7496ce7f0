from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

from redis import Redis
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..config import BrokerConfig
from ..errors import BrokerConnectionError, BrokerTimeout, BrokerUnconfigured, QueueError
from ..metrics.registry import BROKER_CONNECT_TOTAL, BROKER_INVALIDATED_TOTAL
from .redis_streams import BrokerChannel

logger = logging.getLogger(__name__)

RedisFactory = Callable[[str, float], Redis]


def mask_url(url: Optional[str]) -> Optional[str]:
    """
    Replace the username and password of a broker URL with ``***``.

    Returns the input unchanged when it is empty or cannot be parsed.
    """
    if not url:
        return url
    try:
        parts = urlsplit(url)
        if not (parts.username or parts.password):
            return url
        host = parts.hostname or ""
        if parts.port is not None:
            host = f"{host}:{parts.port}"
        user = "***" if parts.username else ""
        password = ":***" if parts.password else ""
        return urlunsplit(parts._replace(netloc=f"{user}{password}@{host}"))
    except ValueError:
        return url


def default_redis_factory(url: str, timeout_s: float) -> Redis:
    return Redis.from_url(
        url,
        decode_responses=False,
        socket_connect_timeout=timeout_s,
        socket_timeout=timeout_s,
    )


class BrokerConnectionManager:
    """
    Owner of the process-wide broker connection.

    The connection is established lazily by the first acquire_channel() and
    reused by every later call. Connection errors seen by the channel
    invalidate the cached state; nothing reconnects eagerly, the next
    acquire_channel() simply connects again.

    The connect path is serialized with a lock so that concurrent first
    callers share one connection instead of racing to open several.

    Usage:
        manager = BrokerConnectionManager(BrokerConfig.from_env())
        channel = manager.acquire_channel()
        channel.publish({...})
        manager.shutdown()
    """

    def __init__(
        self,
        config: BrokerConfig,
        redis_factory: Optional[RedisFactory] = None,
    ) -> None:
        self.config = config
        self._redis_factory = redis_factory or default_redis_factory
        self._lock = threading.Lock()
        self._client: Optional[Redis] = None
        self._channel: Optional[BrokerChannel] = None

    def acquire_channel(self) -> BrokerChannel:
        """
        Return a channel bound to the durable mutation stream.

        Idempotent: an open channel is returned unchanged. Otherwise a new
        connection is made, verified with PING and the stream/group declared.

        Raises:
            BrokerUnconfigured: If no broker URL is configured
            BrokerTimeout: If connecting exceeds config.connect_timeout_ms
            BrokerConnectionError: If the broker cannot be reached otherwise
        """
        channel = self._channel
        if channel is not None:
            return channel

        with self._lock:
            if self._channel is not None:
                return self._channel
            return self._connect()

    def _connect(self) -> BrokerChannel:
        url = self.config.redis_url
        if not url:
            BROKER_CONNECT_TOTAL.labels(status="unconfigured").inc()
            raise BrokerUnconfigured(
                "Broker is not configured: set REELQUEUE_REDIS_URL to the Redis instance "
                "holding the mutation stream"
            )

        masked = mask_url(url)
        timeout_ms = self.config.connect_timeout_ms
        try:
            client = self._redis_factory(url, timeout_ms / 1000.0)
        except ValueError as exc:
            BROKER_CONNECT_TOTAL.labels(status="error").inc()
            raise BrokerConnectionError(f"Invalid broker URL ({masked}): {exc}") from exc

        try:
            client.ping()
            channel = BrokerChannel(client, self.config, on_connection_lost=self._channel_lost)
            channel.declare()
        except RedisTimeoutError as exc:
            BROKER_CONNECT_TOTAL.labels(status="timeout").inc()
            self._close_quietly(client)
            logger.error("Timed out connecting to broker %s after %sms", masked, timeout_ms)
            raise BrokerTimeout(timeout_ms, masked) from exc
        except (RedisError, QueueError) as exc:
            BROKER_CONNECT_TOTAL.labels(status="error").inc()
            self._close_quietly(client)
            logger.error("Could not connect to broker %s: %s", masked, exc)
            raise BrokerConnectionError(f"Could not connect to broker ({masked}): {exc}") from exc

        self._client = client
        self._channel = channel
        BROKER_CONNECT_TOTAL.labels(status="success").inc()
        logger.info("Connected to broker %s (stream=%s)", masked, self.config.stream_key)
        return channel

    def _channel_lost(self, channel: BrokerChannel) -> None:
        self.invalidate(channel)

    def invalidate(self, channel: Optional[BrokerChannel] = None) -> None:
        """
        Drop the cached connection after an error so the next caller reconnects.

        When ``channel`` is given, state is only dropped if it is still the
        cached channel; a stale channel cannot tear down a newer connection.
        """
        with self._lock:
            if channel is not None and channel is not self._channel:
                return
            client = self._client
            had_channel = self._channel is not None
            self._client = None
            self._channel = None

        if had_channel:
            BROKER_INVALIDATED_TOTAL.inc()
            logger.warning("Broker connection invalidated; next caller will reconnect")
        if client is not None:
            self._close_quietly(client)

    def shutdown(self) -> None:
        """
        Close the connection if one is open. Safe to call when nothing is open.
        """
        with self._lock:
            client = self._client
            self._client = None
            self._channel = None

        if client is not None:
            client.close()
            logger.info("Broker connection closed")

    def status(self) -> dict[str, Any]:
        """Report configuration and liveness without connecting."""
        return {
            "configured": self.config.configured,
            "connected": self._channel is not None,
            "url": mask_url(self.config.redis_url),
            "queue": self.config.stream_key,
            "consumer_group": self.config.consumer_group,
        }

    @staticmethod
    def _close_quietly(client: Redis) -> None:
        try:
            client.close()
        except RedisError as exc:
            logger.debug("Ignoring error while closing broker client: %s", exc)
