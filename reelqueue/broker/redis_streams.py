from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, Mapping, Optional

from redis import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..config import BrokerConfig
from ..errors import QueueError
from ..metrics.registry import (
    QUEUE_MESSAGES_ACK_TOTAL,
    QUEUE_MESSAGES_CLAIMED_TOTAL,
    QUEUE_MESSAGES_DEAD_LETTERED_TOTAL,
    QUEUE_MESSAGES_DISCARDED_TOTAL,
    QUEUE_MESSAGES_PUBLISHED_TOTAL,
    QUEUE_MESSAGES_READ_TOTAL,
)
from .models import QueueMessage

logger = logging.getLogger(__name__)

# Pending entries owned by the reading consumer, then entries never delivered.
_OWN_PENDING = "0"
_NEW_ENTRIES = ">"


def _text(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class BrokerChannel:
    """
    Session on the durable mutation stream.

    A channel is bound to one stream and one consumer group. It is created
    and owned by BrokerConnectionManager; callers receive it from
    acquire_channel() and must not keep it across invocations.

    Every Redis failure is raised as QueueError. Connection-level failures
    additionally call ``on_connection_lost`` first so the owner can drop its
    cached connection; the next acquire_channel() then reconnects.
    """

    def __init__(
        self,
        redis: Redis,
        config: BrokerConfig,
        on_connection_lost: Optional[Callable[["BrokerChannel"], None]] = None,
    ) -> None:
        self._redis = redis
        self.config = config
        self._on_connection_lost = on_connection_lost

    @property
    def stream(self) -> str:
        return self.config.stream_key

    @property
    def group(self) -> str:
        return self.config.consumer_group

    @contextmanager
    def _redis_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError) as exc:
            logger.warning("Broker connection lost during %s on %s: %s", action, self.stream, exc)
            if self._on_connection_lost is not None:
                self._on_connection_lost(self)
            raise QueueError(f"{action} failed on stream {self.stream}: {exc}") from exc
        except RedisError as exc:
            raise QueueError(f"{action} failed on stream {self.stream}: {exc}") from exc

    def declare(self) -> None:
        """
        Ensure the stream and its consumer group exist.

        The group starts at id 0 so entries published before the first drain
        are still delivered. An existing group (BUSYGROUP) is left untouched.
        """
        try:
            self._redis.xgroup_create(self.stream, self.group, id="0", mkstream=True)
        except ResponseError as exc:
            if "BUSYGROUP" in str(exc):
                return
            raise QueueError(f"Failed to declare consumer group {self.group}: {exc}") from exc
        except (RedisConnectionError, RedisTimeoutError):
            raise
        except RedisError as exc:
            raise QueueError(f"Failed to declare consumer group {self.group}: {exc}") from exc

    def publish(self, payload: Mapping[str, Any]) -> str:
        """
        Append one JSON payload to the stream and return its entry id.

        Entries are never trimmed here: a published message stays in the
        stream until a drain acknowledges or discards it.
        """
        try:
            body = json.dumps(payload)
        except (TypeError, ValueError) as exc:
            raise QueueError(f"Payload is not JSON-serializable: {exc}") from exc

        with self._redis_errors("publish"):
            entry_id = self._redis.xadd(self.stream, {"data": body})

        QUEUE_MESSAGES_PUBLISHED_TOTAL.labels(stream=self.stream).inc()
        return _text(entry_id)

    def get(self, consumer: str) -> Optional[QueueMessage]:
        """
        Pull at most one message for ``consumer`` without blocking.

        Entries already pending for this consumer (for example reclaimed from a
        crashed drain) come first, then entries never delivered to the group.
        Returns None when both are empty.
        """
        while True:
            msg = self._read_one(consumer, _OWN_PENDING)
            if msg is None:
                msg = self._read_one(consumer, _NEW_ENTRIES)
            if msg is None:
                return None
            if not msg.fields:
                # Entry was deleted while pending; nothing left to apply.
                self._ack_and_delete(msg)
                continue
            QUEUE_MESSAGES_READ_TOTAL.labels(stream=self.stream).inc()
            return msg

    def _read_one(self, consumer: str, start: str) -> Optional[QueueMessage]:
        with self._redis_errors("read"):
            response = self._redis.xreadgroup(
                self.group,
                consumer,
                {self.stream: start},
                count=1,
            )

        for _stream, entries in response or []:
            for entry_id, fields in entries:
                if entry_id is None:
                    continue
                decoded = {_text(k): v for k, v in (fields or {}).items()}
                return QueueMessage(
                    stream=self.stream,
                    group=self.group,
                    id=_text(entry_id),
                    fields=decoded,
                )
        return None

    def _ack_and_delete(self, msg: QueueMessage) -> None:
        with self._redis_errors("ack"):
            pipe = self._redis.pipeline(transaction=True)
            pipe.xack(self.stream, self.group, msg.id)
            pipe.xdel(self.stream, msg.id)
            pipe.execute()

    def ack(self, msg: QueueMessage) -> None:
        """
        Acknowledge a message and remove it from the stream for good.
        """
        self._ack_and_delete(msg)
        QUEUE_MESSAGES_ACK_TOTAL.labels(stream=self.stream).inc()

    def discard(self, msg: QueueMessage, error: str) -> None:
        """
        Negatively acknowledge a message without requeue.

        When a dead-letter stream is configured the raw entry and the error
        text are copied there first; otherwise the message is lost.
        """
        dead_letter = self.config.dead_letter_stream
        if dead_letter:
            fields: dict[str, Any] = dict(msg.fields)
            fields["_error"] = error
            fields["_source_id"] = msg.id
            with self._redis_errors("dead-letter"):
                self._redis.xadd(dead_letter, fields)
            QUEUE_MESSAGES_DEAD_LETTERED_TOTAL.labels(stream=self.stream).inc()

        self._ack_and_delete(msg)
        QUEUE_MESSAGES_DISCARDED_TOTAL.labels(stream=self.stream).inc()

    def claim_stale(self, consumer: str, min_idle_ms: int, count: int = 100) -> int:
        """
        Move entries idle longer than ``min_idle_ms`` to ``consumer``.

        Claimed entries are then returned by get() ahead of new ones. Returns
        the number of entries claimed.
        """
        with self._redis_errors("claim"):
            claimed = self._redis.xautoclaim(
                self.stream,
                self.group,
                consumer,
                min_idle_ms,
                start_id="0-0",
                count=count,
                justid=True,
            )
        claimed_count = len(claimed or [])
        if claimed_count:
            QUEUE_MESSAGES_CLAIMED_TOTAL.labels(stream=self.stream).inc(claimed_count)
        return claimed_count

    def remove_consumer(self, consumer: str) -> None:
        with self._redis_errors("remove consumer"):
            self._redis.xgroup_delconsumer(self.stream, self.group, consumer)

    def pending_count(self) -> int:
        """Number of entries delivered to the group but not yet acknowledged."""
        with self._redis_errors("pending"):
            info = self._redis.xpending(self.stream, self.group)
        return int(info["pending"]) if info else 0

    def length(self) -> int:
        """Number of entries currently stored in the stream."""
        with self._redis_errors("length"):
            return int(self._redis.xlen(self.stream))
