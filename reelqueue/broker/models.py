from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from ..errors import QueueError


@dataclass(frozen=True)
class QueueMessage:
    """
    One entry pulled from the mutation stream.

    The body is kept undecoded so that a malformed entry still reaches the
    drain loop and can be discarded like any other failed message.
    """
    stream: str
    group: str
    id: str
    fields: dict[str, bytes]

    def decode(self) -> dict[str, Any]:
        """
        Decode the JSON payload stored in the entry's single "data" field.

        Raises:
            QueueError: If the entry format is not exactly {"data": <json object>}
        """
        if set(self.fields) != {"data"}:
            raise QueueError(
                f"Invalid stream entry format for {self.id}: expected a single 'data' field, "
                f"got {sorted(self.fields)}"
            )
        raw = self.fields["data"]
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise QueueError(f"Entry {self.id} does not contain valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise QueueError(f"Entry {self.id} payload must be a JSON object")
        return payload
