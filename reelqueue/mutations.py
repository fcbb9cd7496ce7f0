from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

from .errors import UnknownOperation

# Field values a catalog document may carry. Identifiers travel as strings.
DocumentValue = Union[str, int, float, bool, None, list[str]]
Document = dict[str, DocumentValue]


class Operation(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class MutationMessage:
    """
    A mutation intent carried on the queue.

    The shape must match the operation:
    - CREATE has data and no id
    - UPDATE has both
    - DELETE has id and no data
    """
    operation: Operation
    collection: str
    user_id: str
    id: Optional[str] = None
    data: Optional[Document] = None

    def validate(self) -> None:
        """
        Raise ValueError if the message shape does not match its operation.
        """
        if not isinstance(self.operation, Operation):
            raise ValueError(f"Unsupported operation: {self.operation!r}")
        if not self.collection:
            raise ValueError("collection cannot be empty")
        if not self.user_id:
            raise ValueError("user_id cannot be empty")

        if self.operation == Operation.CREATE:
            if self.id is not None:
                raise ValueError("CREATE messages must not carry an id")
            if self.data is None:
                raise ValueError("CREATE messages require data")
        elif self.operation == Operation.UPDATE:
            if not self.id:
                raise ValueError("UPDATE messages require an id")
            if self.data is None:
                raise ValueError("UPDATE messages require data")
        elif self.operation == Operation.DELETE:
            if not self.id:
                raise ValueError("DELETE messages require an id")
            if self.data is not None:
                raise ValueError("DELETE messages must not carry data")

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "operation": self.operation.value,
            "collection": self.collection,
            "userId": self.user_id,
        }
        if self.id is not None:
            payload["id"] = self.id
        if self.data is not None:
            payload["data"] = dict(self.data)
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "MutationMessage":
        """
        Parse a drained payload.

        Only the operation is checked here; everything else is left for the
        apply step to trip over, so malformed messages fail where they are used.
        """
        raw_op = payload.get("operation")
        try:
            operation = Operation(raw_op)
        except ValueError:
            raise UnknownOperation(f"Unknown operation: {raw_op}") from None
        return cls(
            operation=operation,
            collection=payload.get("collection"),
            user_id=payload.get("userId"),
            id=payload.get("id"),
            data=payload.get("data"),
        )
