from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from ..auth import AuthClaims, require_auth
from ..broker import BrokerConnectionManager, MutationProducer, QueueDrainProcessor
from ..broker.connection import RedisFactory
from ..config import AppConfig
from ..store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a request handler needs, built once per process."""

    config: AppConfig
    connections: BrokerConnectionManager
    store: DocumentStore
    producer: MutationProducer
    drain: QueueDrainProcessor

    @classmethod
    def build(
        cls,
        config: AppConfig,
        store: Optional[DocumentStore] = None,
        redis_factory: Optional[RedisFactory] = None,
    ) -> "Services":
        store = store or DocumentStore.from_config(config.store)
        connections = BrokerConnectionManager(config.broker, redis_factory=redis_factory)
        return cls(
            config=config,
            connections=connections,
            store=store,
            producer=MutationProducer(connections),
            drain=QueueDrainProcessor(connections, store),
        )

    def close(self) -> None:
        self.connections.shutdown()
        self.store.dispose()


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_user(request: Request) -> AuthClaims:
    """Authorization gate for mutating routes."""
    services = get_services(request)
    return require_auth(request.headers, services.config.auth)
