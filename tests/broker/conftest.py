from __future__ import annotations

from collections.abc import Callable, Iterator

import pytest
from redis import Redis

from reelqueue.broker import BrokerConnectionManager
from reelqueue.config import BrokerConfig


class CountingFactory:
    """Wraps a redis factory and counts how many clients it created."""

    def __init__(self, factory: Callable[[str, float], Redis]) -> None:
        self._factory = factory
        self.calls: list[tuple[str, float]] = []

    def __call__(self, url: str, timeout_s: float) -> Redis:
        self.calls.append((url, timeout_s))
        return self._factory(url, timeout_s)


@pytest.fixture
def counting_factory(redis_factory: Callable[[str, float], Redis]) -> CountingFactory:
    return CountingFactory(redis_factory)


@pytest.fixture
def manager(broker_config: BrokerConfig, counting_factory: CountingFactory) -> Iterator[BrokerConnectionManager]:
    mgr = BrokerConnectionManager(broker_config, redis_factory=counting_factory)
    yield mgr
    mgr.shutdown()
