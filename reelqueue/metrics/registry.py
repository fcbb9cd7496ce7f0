from __future__ import annotations

from prometheus_client import Counter, Histogram

# Broker

BROKER_CONNECT_TOTAL = Counter(
    "reelqueue_broker_connect_total",
    "Broker connection attempts",
    ["status"],
)

BROKER_INVALIDATED_TOTAL = Counter(
    "reelqueue_broker_invalidated_total",
    "Cached broker connections dropped after a connection error",
)

# Queue

QUEUE_MESSAGES_PUBLISHED_TOTAL = Counter(
    "reelqueue_queue_messages_published_total",
    "Mutation messages published to the stream",
    ["stream"],
)

QUEUE_MESSAGES_READ_TOTAL = Counter(
    "reelqueue_queue_messages_read_total",
    "Messages pulled from the stream",
    ["stream"],
)

QUEUE_MESSAGES_ACK_TOTAL = Counter(
    "reelqueue_queue_messages_ack_total",
    "Messages acknowledged and removed from the stream",
    ["stream"],
)

QUEUE_MESSAGES_DISCARDED_TOTAL = Counter(
    "reelqueue_queue_messages_discarded_total",
    "Messages dropped without requeue after an apply failure",
    ["stream"],
)

QUEUE_MESSAGES_DEAD_LETTERED_TOTAL = Counter(
    "reelqueue_queue_messages_dead_lettered_total",
    "Failed messages copied to the dead-letter stream",
    ["stream"],
)

QUEUE_MESSAGES_CLAIMED_TOTAL = Counter(
    "reelqueue_queue_messages_claimed_total",
    "Stale pending messages reclaimed by a drain",
    ["stream"],
)

QUEUE_DRAIN_DURATION_SECONDS = Histogram(
    "reelqueue_queue_drain_duration_seconds",
    "Wall time of one drain invocation",
    ["stream"],
)

# Store

STORE_WRITE_TOTAL = Counter(
    "reelqueue_store_write_total",
    "Document store writes",
    ["collection", "op_type", "status"],
)

STORE_WRITE_LATENCY_SECONDS = Histogram(
    "reelqueue_store_write_latency_seconds",
    "Document store write latency",
    ["collection", "op_type"],
)
