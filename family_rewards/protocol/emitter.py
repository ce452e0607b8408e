"""Typed SSE event emitter and parser — protocol-enforced serialization.

Every event the server pushes passes through ``emit()``.
Two entry points:

  ``emit(RewardsEvent)``  — serialize a typed event object to SSE wire format.
  ``parse_event(dict)``   — deserialize a wire-format dict back into the
                            correct RewardsEvent subclass (inverse of ``emit``).
                            Used by the client and by tests.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping

from family_rewards.protocol.events import RewardsEvent
from family_rewards.protocol.registry import EVENT_REGISTRY

logger = logging.getLogger(__name__)

HEARTBEAT_FRAME = ": ping\n\n"


class ProtocolSerializationError(Exception):
    """Raised when an event dict fails protocol validation."""


def to_wire(event: RewardsEvent) -> dict[str, object]:
    """Wire-format dict (camelCase, no nulls) for an event."""
    return event.model_dump(by_alias=True, exclude_none=True)


def emit(event: RewardsEvent) -> str:
    """Serialize a RewardsEvent to SSE wire format.

    Returns ``data: {json}\\n\\n``.

    Raises TypeError for non-RewardsEvent arguments.
    Raises ValueError for unregistered event types.
    """
    if not isinstance(event, RewardsEvent):
        raise TypeError(
            f"emit() requires a RewardsEvent, got {type(event).__name__}."
        )

    if event.type not in EVENT_REGISTRY:
        raise ValueError(
            f"Unknown event type '{event.type}'. "
            f"Register it in family_rewards/protocol/registry.py."
        )

    return f"data: {json.dumps(to_wire(event), separators=(',', ':'), ensure_ascii=False)}\n\n"


def parse_event(data: Mapping[str, object]) -> RewardsEvent:
    """Deserialize a wire-format dict back into the correct RewardsEvent subclass.

    Raises ``ProtocolSerializationError`` for unknown or malformed events.
    """
    event_type = data.get("type")
    if not isinstance(event_type, str):
        raise ProtocolSerializationError("Event dict missing 'type' field")

    if event_type not in EVENT_REGISTRY:
        raise ProtocolSerializationError(
            f"Unknown event type '{event_type}'. Cannot deserialize."
        )

    model_class = EVENT_REGISTRY[event_type]
    try:
        return model_class.model_validate(data)
    except Exception as exc:
        raise ProtocolSerializationError(
            f"Event '{event_type}' failed deserialization: {exc}"
        ) from exc


def parse_sse_data(line: str) -> RewardsEvent | None:
    """Parse one SSE line. Returns None for comments, blanks and non-data fields."""
    if not line.startswith("data:"):
        return None
    payload = line[5:].strip()
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ProtocolSerializationError(f"Malformed SSE data frame: {exc}") from exc
    if not isinstance(data, dict):
        raise ProtocolSerializationError("SSE data frame is not a JSON object")
    return parse_event(data)
