from .documents import DocumentStore
from .helpers import normalize_id, validate_identifier
from .session import DocumentSession

__all__ = [
    "DocumentSession",
    "DocumentStore",
    "normalize_id",
    "validate_identifier",
]
