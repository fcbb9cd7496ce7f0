from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol

from ..errors import ApplyFailure, QueueError, StoreError, UnknownOperation
from ..metrics.registry import QUEUE_DRAIN_DURATION_SECONDS
from ..mutations import MutationMessage, Operation
from .connection import BrokerConnectionManager
from .models import QueueMessage
from .redis_streams import BrokerChannel

logger = logging.getLogger(__name__)


class MutationStore(Protocol):
    """
    Store primitives the drain applies messages with.
    """

    def insert(self, collection: str, data: Mapping[str, Any]) -> str:
        """Insert a document and return its generated id."""
        ...

    def find_one_and_update(
        self,
        collection: str,
        doc_id: Any,
        partial: Mapping[str, Any],
    ) -> Optional[dict[str, Any]]:
        """Apply a partial update and return the updated document, or None."""
        ...

    def delete_one(self, collection: str, doc_id: Any) -> int:
        """Delete a document and return the number removed."""
        ...


@dataclass
class DrainOutcome:
    success: bool
    operation: Optional[str] = None
    collection: Optional[str] = None
    result: Any = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {
                "operation": self.operation,
                "collection": self.collection,
                "success": True,
                "result": self.result,
            }
        out: dict[str, Any] = {"success": False, "error": self.error}
        if self.operation is not None:
            out["operation"] = self.operation
        if self.collection is not None:
            out["collection"] = self.collection
        return out


@dataclass
class DrainReport:
    """
    Result of one drain invocation, in arrival order.

    ``processed_count`` counts acknowledged (successfully applied) messages.
    """
    processed_count: int = 0
    outcomes: list[DrainOutcome] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.success)

    def record_success(self, operation: str, collection: str, result: Any) -> None:
        self.processed_count += 1
        self.outcomes.append(
            DrainOutcome(success=True, operation=operation, collection=collection, result=result)
        )

    def record_failure(
        self,
        error: str,
        operation: Optional[str] = None,
        collection: Optional[str] = None,
    ) -> None:
        self.outcomes.append(
            DrainOutcome(success=False, operation=operation, collection=collection, error=error)
        )

    def to_dict(self) -> dict[str, Any]:
        if self.processed_count > 0:
            summary = f"Processed {self.processed_count} pending updates"
        else:
            summary = "No pending updates"
        return {
            "processed": self.processed_count,
            "message": summary,
            "results": [outcome.to_dict() for outcome in self.outcomes],
        }


def apply_mutation(store: MutationStore, message: MutationMessage) -> Any:
    """
    Apply one mutation to the store and return its result.

    - CREATE returns the generated id merged with the inserted data
    - UPDATE returns the updated document, or None if nothing matched
    - DELETE returns the deletion count, 0 when nothing matched

    Raises:
        UnknownOperation: If the operation is not one of the above
        ApplyFailure: If the store rejects the write
    """
    op = message.operation
    try:
        if op == Operation.CREATE:
            inserted_id = store.insert(message.collection, message.data)
            return {"insertedId": inserted_id, **message.data}
        if op == Operation.UPDATE:
            return store.find_one_and_update(message.collection, message.id, message.data)
        if op == Operation.DELETE:
            return {"deletedCount": store.delete_one(message.collection, message.id)}
    except StoreError as exc:
        raise ApplyFailure(f"{op.value} on {message.collection} failed: {exc}") from exc
    raise UnknownOperation(f"Unknown operation: {op}")


class QueueDrainProcessor:
    """
    Pulls every queued mutation and applies it to the store.

    drain() is a batch, not a subscription: it pulls one message at a time
    without blocking and stops at the first empty pull. Nothing drains the
    queue between invocations; callers that need continuous processing must
    trigger drain() again (for example on a schedule).

    Per message:
    - success: ack (the entry is removed) and record the result
    - any failure: discard without requeue and record the error

    A failed message never blocks the queue, and it is not retried. When the
    broker config names a dead-letter stream the failed entry is copied there
    before it is discarded.

    Broker errors while pulling or acknowledging abort the drain; messages
    left pending are reclaimed by a later drain once idle for
    ``claim_idle_ms``.
    """

    def __init__(self, connections: BrokerConnectionManager, store: MutationStore) -> None:
        self._connections = connections
        self._store = store

    def drain(self) -> DrainReport:
        config = self._connections.config
        channel = self._connections.acquire_channel()
        # Unique per invocation so concurrent drains never share pending entries.
        consumer = f"{config.consumer_prefix}-{uuid.uuid4().hex[:12]}"
        report = DrainReport()
        start_time = time.monotonic()

        logger.info("Draining %s as %s", channel.stream, consumer)
        try:
            claimed = channel.claim_stale(consumer, config.claim_idle_ms)
            if claimed:
                logger.warning("Reclaimed %d stale messages from an earlier drain", claimed)

            while True:
                msg = channel.get(consumer)
                if msg is None:
                    break
                self._process(channel, msg, report)
        finally:
            QUEUE_DRAIN_DURATION_SECONDS.labels(stream=channel.stream).observe(
                time.monotonic() - start_time
            )

        # Only after a clean finish: removing a consumer drops its pending entries.
        try:
            channel.remove_consumer(consumer)
        except QueueError as exc:
            logger.warning("Could not remove drain consumer %s: %s", consumer, exc)

        logger.info(
            "Drain of %s finished: %d applied, %d discarded",
            channel.stream,
            report.processed_count,
            report.failed_count,
        )
        return report

    def _process(self, channel: BrokerChannel, msg: QueueMessage, report: DrainReport) -> None:
        payload: dict[str, Any] = {}
        try:
            payload = msg.decode()
            message = MutationMessage.from_payload(payload)
            logger.debug("Applying %s on %s (entry=%s)", message.operation.value, message.collection, msg.id)
            result = apply_mutation(self._store, message)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            logger.warning("Discarding message %s without requeue: %s", msg.id, error)
            channel.discard(msg, error)
            report.record_failure(
                error,
                operation=_optional_text(payload.get("operation")),
                collection=_optional_text(payload.get("collection")),
            )
            return

        channel.ack(msg)
        report.record_success(message.operation.value, message.collection, result)


def _optional_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)
