from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

LOCAL_REDIS_URL = "redis://localhost:6379/0"
LOCAL_DATABASE_URL = "sqlite:///reelqueue.db"
LOCAL_JWT_SECRET = "reelqueue-local-secret-change-me"


def is_deployed(environ: Mapping[str, str]) -> bool:
    """
    True when running anywhere but a developer machine.

    Serverless platforms are detected from the variables they inject; any
    other deployment is expected to set REELQUEUE_ENV.
    """
    if environ.get("AWS_LAMBDA_FUNCTION_NAME") or environ.get("NETLIFY"):
        return True
    return environ.get("REELQUEUE_ENV", "local").strip().lower() != "local"


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    return int(raw)


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class BrokerConfig:
    redis_url: Optional[str]
    stream_key: str = "catalog_mutations"
    consumer_group: str = "catalog_drain"
    consumer_prefix: str = "drain"
    connect_timeout_ms: int = 8_000
    claim_idle_ms: int = 60_000
    dead_letter_stream: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.connect_timeout_ms <= 0:
            raise ValueError("connect_timeout_ms must be > 0")
        if self.claim_idle_ms <= 0:
            raise ValueError("claim_idle_ms must be > 0")
        if not self.stream_key:
            raise ValueError("stream_key cannot be empty")
        if not self.consumer_group:
            raise ValueError("consumer_group cannot be empty")
        if self.dead_letter_stream is not None and self.dead_letter_stream == self.stream_key:
            raise ValueError("dead_letter_stream must differ from stream_key")

    @property
    def configured(self) -> bool:
        return bool(self.redis_url)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "BrokerConfig":
        """
        Build the broker configuration from environment variables.

        Outside a deployed environment a missing REELQUEUE_REDIS_URL falls back
        to a local Redis. Deployed environments never fall back; the URL stays
        unset and the connection manager reports the broker as unconfigured.
        """
        env = os.environ if environ is None else environ
        url = env.get("REELQUEUE_REDIS_URL") or None
        if url is None and not is_deployed(env):
            url = LOCAL_REDIS_URL
        return cls(
            redis_url=url,
            stream_key=env.get("REELQUEUE_STREAM", "catalog_mutations"),
            consumer_group=env.get("REELQUEUE_CONSUMER_GROUP", "catalog_drain"),
            connect_timeout_ms=_env_int(env, "REELQUEUE_CONNECT_TIMEOUT_MS", 8_000),
            claim_idle_ms=_env_int(env, "REELQUEUE_CLAIM_IDLE_MS", 60_000),
            dead_letter_stream=env.get("REELQUEUE_DEAD_LETTER_STREAM") or None,
        )


@dataclass
class StoreConfig:
    database_url: str
    table: str = "documents"

    def __post_init__(self) -> None:
        if not self.database_url:
            raise ValueError("database_url cannot be empty")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "StoreConfig":
        env = os.environ if environ is None else environ
        url = env.get("REELQUEUE_DATABASE_URL") or None
        if url is None:
            if is_deployed(env):
                raise ValueError("REELQUEUE_DATABASE_URL must be set in a deployed environment")
            url = LOCAL_DATABASE_URL
        return cls(database_url=url, table=env.get("REELQUEUE_DOCUMENTS_TABLE", "documents"))


@dataclass
class AuthConfig:
    secret: str
    algorithm: str = "HS256"
    expires_in: timedelta = field(default_factory=lambda: timedelta(days=7))

    def __post_init__(self) -> None:
        if not self.secret:
            raise ValueError("secret cannot be empty")
        if self.expires_in <= timedelta(0):
            raise ValueError("expires_in must be positive")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AuthConfig":
        env = os.environ if environ is None else environ
        secret = env.get("REELQUEUE_JWT_SECRET") or None
        if secret is None:
            if is_deployed(env):
                raise ValueError("REELQUEUE_JWT_SECRET must be set in a deployed environment")
            secret = LOCAL_JWT_SECRET
        return cls(secret=secret)


@dataclass
class AppConfig:
    broker: BrokerConfig
    store: StoreConfig
    auth: AuthConfig
    drain_requires_auth: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AppConfig":
        env = os.environ if environ is None else environ
        return cls(
            broker=BrokerConfig.from_env(env),
            store=StoreConfig.from_env(env),
            auth=AuthConfig.from_env(env),
            drain_requires_auth=_env_bool(env, "REELQUEUE_DRAIN_REQUIRES_AUTH", False),
        )
