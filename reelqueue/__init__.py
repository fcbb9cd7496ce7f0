from .auth import AuthClaims, require_auth
from .broker import BrokerConnectionManager, DrainReport, MutationProducer, QueueDrainProcessor
from .config import AppConfig, BrokerConfig, StoreConfig
from .mutations import MutationMessage, Operation
from .store import DocumentStore

__all__ = [
    "AppConfig",
    "AuthClaims",
    "BrokerConfig",
    "BrokerConnectionManager",
    "DocumentStore",
    "DrainReport",
    "MutationMessage",
    "MutationProducer",
    "Operation",
    "QueueDrainProcessor",
    "StoreConfig",
    "require_auth",
]
