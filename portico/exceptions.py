"""Exception hierarchy for portico."""

from __future__ import annotations

from typing import Any

from .utils import qualified_name


class PorticoError(Exception):
    """Base class for every error raised by portico."""


class ConfigError(PorticoError, ValueError):
    """Invalid or missing endpoint configuration.

    Raised while loading or compiling an endpoint and while starting it.
    An endpoint must never serve requests with invalid mandatory settings.
    """

    def __init__(self, message: str, *, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class PipelineError(PorticoError):
    """A pipeline step broke the plug contract."""

    def __init__(self, step: Any, message: str) -> None:
        super().__init__(f"{qualified_name(step)}: {message}")
        self.step = step


class AlreadySentError(PorticoError):
    """A response was sent twice for the same request."""


class BroadcastError(PorticoError):
    """Delivery through the pub/sub server failed."""

    def __init__(self, reason: Any, *, topic: str | None = None) -> None:
        super().__init__(str(reason))
        self.reason = reason
        self.topic = topic


__all__ = [
    "AlreadySentError",
    "BroadcastError",
    "ConfigError",
    "PipelineError",
    "PorticoError",
]
