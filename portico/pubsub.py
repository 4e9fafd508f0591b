"""Publish/subscribe servers registered by name.

Endpoints only know the *name* of their pub/sub server; the server itself
is looked up here on every call. :class:`LocalPubSub` delivers within the
current process and is what ``{"pubsub": {"adapter": LocalPubSub}}`` starts.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Protocol

from infrastructure.monitoring import start_span

from .exceptions import BroadcastError

_LOGGER = logging.getLogger("portico.pubsub")

_servers: dict[str, "PubSubServer"] = {}
_servers_lock = threading.Lock()


class PubSubServer(Protocol):
    """Interface every pub/sub adapter implements."""

    def subscribe(self, subscriber: Any, topic: str, **opts: Any) -> None:
        """Deliver messages published on *topic* to *subscriber*."""

    def unsubscribe(self, subscriber: Any, topic: str) -> None:
        """Stop delivering *topic* messages to *subscriber*."""

    def broadcast(self, sender: Any, topic: str, message: Any) -> None:
        """Deliver *message* to *topic* subscribers except *sender*.

        Raises :class:`BroadcastError` when delivery fails.
        """


def _deliver_fn(subscriber: Any) -> Callable[[Any], Any]:
    put = getattr(subscriber, "put_nowait", None)
    if callable(put):
        return put
    if callable(subscriber):
        return subscriber
    raise TypeError(
        f"subscriber {subscriber!r} must be callable or provide put_nowait()"
    )


class LocalPubSub:
    """Deliver messages to subscribers living in this process.

    Subscribers are callables receiving the message, or queues (anything
    with ``put_nowait``). Subscribing twice delivers twice.
    """

    def __init__(self, name: str, pool_size: int = 1, **options: Any) -> None:
        self.name = name
        self.pool_size = pool_size
        self.options = options
        self._topics: dict[str, list[tuple[Any, Callable[[Any], Any], dict[str, Any]]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Any, topic: str, **opts: Any) -> None:
        deliver = _deliver_fn(subscriber)
        with self._lock:
            self._topics.setdefault(topic, []).append((subscriber, deliver, opts))

    def unsubscribe(self, subscriber: Any, topic: str) -> None:
        with self._lock:
            subs = self._topics.get(topic, [])
            remaining = [entry for entry in subs if entry[0] is not subscriber]
            if remaining:
                self._topics[topic] = remaining
            else:
                self._topics.pop(topic, None)

    def subscribers(self, topic: str) -> list[Any]:
        with self._lock:
            return [entry[0] for entry in self._topics.get(topic, [])]

    def broadcast(self, sender: Any, topic: str, message: Any) -> None:
        with self._lock:
            targets = list(self._topics.get(topic, []))
        failures: list[BaseException] = []
        with start_span(f"pubsub.broadcast:{topic}", {"pubsub.server": self.name}):
            for subscriber, deliver, _opts in targets:
                if sender is not None and subscriber is sender:
                    continue
                try:
                    deliver(message)
                except Exception as exc:  # noqa: BLE001 - reported below
                    failures.append(exc)
        if failures:
            raise BroadcastError(failures[0], topic=topic) from failures[0]


def register(name: str, server: PubSubServer) -> None:
    """Register *server* under *name*."""

    with _servers_lock:
        if name in _servers:
            raise ValueError(f"pubsub server {name!r} is already registered")
        _servers[name] = server


def unregister(name: str) -> None:
    with _servers_lock:
        _servers.pop(name, None)


def lookup(name: str) -> PubSubServer | None:
    return _servers.get(name)


def start(adapter: Any, name: str, **options: Any) -> PubSubServer:
    """Instantiate *adapter* as server *name* and register it."""

    server = adapter(name, **options)
    register(name, server)
    _LOGGER.debug("pubsub server %s started with %s", name, adapter)
    return server


def _server(name: str | None, topic: str | None = None) -> PubSubServer:
    if name is None:
        raise BroadcastError("no pubsub server configured", topic=topic)
    server = lookup(name)
    if server is None:
        raise BroadcastError(f"pubsub server {name!r} is not running", topic=topic)
    return server


def subscribe(name: str | None, subscriber: Any, topic: str, **opts: Any) -> None:
    _server(name, topic).subscribe(subscriber, topic, **opts)


def unsubscribe(name: str | None, subscriber: Any, topic: str) -> None:
    _server(name, topic).unsubscribe(subscriber, topic)


def broadcast(name: str | None, topic: str, message: Any) -> None:
    """Publish *message* on *topic*; raises :class:`BroadcastError`."""

    broadcast_from(name, None, topic, message)


def broadcast_from(name: str | None, sender: Any, topic: str, message: Any) -> None:
    """Publish *message* on *topic* skipping *sender*."""

    server = _server(name, topic)
    try:
        server.broadcast(sender, topic, message)
    except BroadcastError:
        raise
    except Exception as exc:
        raise BroadcastError(exc, topic=topic) from exc


__all__ = [
    "LocalPubSub",
    "PubSubServer",
    "broadcast",
    "broadcast_from",
    "lookup",
    "register",
    "start",
    "subscribe",
    "unregister",
    "unsubscribe",
]
