"""Socket mounts declared on an endpoint."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator

from .utils import resolve


@dataclass(frozen=True, slots=True)
class SocketMount:
    """Bind a path to a socket handler.

    The handler may be an import string; it is only imported by
    :meth:`resolve`, so declaring a mount does not load the handler module.
    """

    path: str
    handler: Any

    def resolve(self) -> Any:
        return resolve(self.handler)


class SocketRegistry:
    """Ordered collection of mounts; duplicate paths are kept."""

    def __init__(self) -> None:
        self._mounts: list[SocketMount] = []

    def register(self, path: str, handler: Any) -> SocketMount:
        if not path.startswith("/"):
            raise ValueError(f"socket path must start with '/', got {path!r}")
        mount = SocketMount(path, handler)
        self._mounts.append(mount)
        return mount

    def mounts(self) -> tuple[SocketMount, ...]:
        return tuple(self._mounts)

    def __iter__(self) -> Iterator[SocketMount]:
        return iter(tuple(self._mounts))

    def __len__(self) -> int:
        return len(self._mounts)


@dataclass(slots=True)
class Socket:
    """Connection state handed to socket handlers."""

    endpoint: Any = None
    handler: Any = None
    id: str | None = None
    pubsub_server: str | None = None
    transport: str | None = None
    assigns: dict[str, Any] = field(default_factory=dict)

    def assign(self, key: str, value: Any) -> "Socket":
        self.assigns[key] = value
        return self


__all__ = ["Socket", "SocketMount", "SocketRegistry"]
