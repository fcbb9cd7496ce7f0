from __future__ import annotations

import logging

from ..mutations import MutationMessage
from .connection import BrokerConnectionManager

logger = logging.getLogger(__name__)


class MutationProducer:
    """
    Publishes mutation intents to the durable stream.

    The producer never touches the store: accepting a mutation and applying
    it are separate steps, the second one happening on the next drain.
    Failures (invalid shape, broker unavailable) propagate to the caller
    unchanged. There is no retry and no local buffering.
    """

    def __init__(self, connections: BrokerConnectionManager) -> None:
        self._connections = connections

    def enqueue(self, message: MutationMessage) -> str:
        """
        Validate, serialize and publish one message.

        Returns:
            The stream entry id of the published message

        Raises:
            ValueError: If the message shape does not match its operation
            BrokerError: If no channel can be acquired
            QueueError: If publishing fails
        """
        message.validate()
        channel = self._connections.acquire_channel()
        entry_id = channel.publish(message.to_payload())
        logger.info(
            "Queued %s on %s (id=%s, user=%s, entry=%s)",
            message.operation.value,
            message.collection,
            message.id,
            message.user_id,
            entry_id,
        )
        return entry_id
