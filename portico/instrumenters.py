"""Ready-made observers for endpoint instrumentation.

Both observers are mappings from event name to hook, so they can be listed
directly under the ``instrumenters`` configuration key::

    "instrumenters": [TracingInstrumenter(["portico_pipeline", "render_view"])]
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Callable, Iterable, Iterator

from infrastructure.monitoring import (
    close_span,
    increment_metric,
    open_span,
    record_latency,
)

from .instrument import START

Hook = Callable[[str, Any, Any], Any]


class _EventMapping(Mapping[str, Hook]):
    def __init__(self, events: Iterable[str]) -> None:
        self._events = tuple(dict.fromkeys(events))

    def __getitem__(self, event: str) -> Hook:
        if event not in self._events:
            raise KeyError(event)
        return lambda phase, a, b: self.hook(event, phase, a, b)

    def __iter__(self) -> Iterator[str]:
        return iter(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def hook(self, event: str, phase: str, a: Any, b: Any) -> Any:
        raise NotImplementedError


class TracingInstrumenter(_EventMapping):
    """Open an OpenTelemetry span for each instrumented event."""

    def hook(self, event: str, phase: str, a: Any, b: Any) -> Any:
        if phase == START:
            attributes = {
                f"code.{key}": value
                for key, value in (a or {}).items()
                if isinstance(value, (str, int))
            }
            return open_span(event, attributes)
        close_span(b, **{"portico.duration_us": a})
        return None


class LatencyInstrumenter(_EventMapping):
    """Record event durations (milliseconds) and an event counter."""

    def hook(self, event: str, phase: str, a: Any, b: Any) -> Any:
        if phase == START:
            return None
        record_latency(event, a / 1000.0)
        increment_metric(f"{event}_total")
        return None


__all__ = ["LatencyInstrumenter", "TracingInstrumenter"]
