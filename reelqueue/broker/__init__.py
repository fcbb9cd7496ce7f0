from __future__ import annotations

from .connection import BrokerConnectionManager, mask_url
from .drain import DrainOutcome, DrainReport, QueueDrainProcessor, apply_mutation
from .models import QueueMessage
from .producer import MutationProducer
from .redis_streams import BrokerChannel

__all__ = [
    "BrokerChannel",
    "BrokerConnectionManager",
    "DrainOutcome",
    "DrainReport",
    "MutationProducer",
    "QueueDrainProcessor",
    "QueueMessage",
    "apply_mutation",
    "mask_url",
]
