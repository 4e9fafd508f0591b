"""Broadcast events to channel topics through a pub/sub server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from . import pubsub
from .exceptions import BroadcastError

_LOGGER = logging.getLogger("portico.pubsub")


@dataclass(frozen=True, slots=True)
class Broadcast:
    """Message delivered to topic subscribers."""

    topic: str
    event: str
    payload: dict[str, Any]


def _message(topic: Any, event: Any, payload: Any) -> Broadcast:
    if not isinstance(topic, str):
        raise TypeError(f"topic must be a string, got {type(topic).__name__}")
    if not isinstance(event, str):
        raise TypeError(f"event must be a string, got {type(event).__name__}")
    if not isinstance(payload, dict):
        raise TypeError(f"payload must be a dict, got {type(payload).__name__}")
    return Broadcast(topic, event, payload)


def broadcast_strict(server: str | None, topic: str, event: str, payload: dict[str, Any]) -> None:
    """Broadcast *event* on *topic*, raising :class:`BroadcastError`."""

    pubsub.broadcast(server, topic, _message(topic, event, payload))


def broadcast_from_strict(
    server: str | None, sender: Any, topic: str, event: str, payload: dict[str, Any]
) -> None:
    """Broadcast skipping *sender*, raising :class:`BroadcastError`."""

    pubsub.broadcast_from(server, sender, topic, _message(topic, event, payload))


def broadcast(server: str | None, topic: str, event: str, payload: dict[str, Any]) -> bool:
    """Broadcast *event* on *topic*; return ``False`` on failure."""

    return broadcast_from(server, None, topic, event, payload)


def broadcast_from(
    server: str | None, sender: Any, topic: str, event: str, payload: dict[str, Any]
) -> bool:
    """Broadcast skipping *sender*; return ``False`` on failure."""

    try:
        broadcast_from_strict(server, sender, topic, event, payload)
    except BroadcastError as exc:
        _LOGGER.warning("broadcast of %r on %r failed: %s", event, topic, exc)
        return False
    return True


__all__ = [
    "Broadcast",
    "broadcast",
    "broadcast_from",
    "broadcast_from_strict",
    "broadcast_strict",
]
