"""Instrumentation of units of work for a fixed set of observers.

Observers express interest in an event by exposing a public callable named
after it that accepts ``(phase, meta1, meta2)``; a plain mapping
``{event: hook}`` works as well. The interest of every observer is resolved
once, when the endpoint is compiled, into a table that maps each event to a
runner closure. Events nobody listens to run their work directly.

For each interested observer, in configured order::

    start_result = hook("start", compile_meta, runtime_meta)
    ...work()...
    hook("stop", elapsed_microseconds, start_result)

Faults raised by hooks are not caught.
"""

from __future__ import annotations

import inspect
import sys
import time
from dataclasses import dataclass
from functools import partial
from types import MappingProxyType, ModuleType
from typing import Any, Callable, Iterable, Mapping, TypeVar

from .conn import Conn
from .utils import qualified_name, resolve

START = "start"
STOP = "stop"

T = TypeVar("T")
Hook = Callable[[str, Any, Any], Any]
Runner = Callable[[Mapping[str, Any], Any, Callable[[], Any]], Any]


@dataclass(frozen=True, slots=True)
class Callbacks:
    """Start and stop hooks of one observer for one event."""

    observer: str
    start: Callable[[Any, Any], Any]
    stop: Callable[[int, Any], Any]


def _takes_three_positional(func: Callable[..., Any]) -> bool:
    try:
        inspect.signature(func).bind(None, None, None)
    except (TypeError, ValueError):
        return False
    return True


def observer_events(observer: Any) -> dict[str, Hook]:
    """Return ``{event: hook}`` for every event *observer* handles."""

    if isinstance(observer, Mapping):
        events: dict[str, Hook] = {}
        for event, hook in observer.items():
            if not callable(hook):
                raise TypeError(f"hook for event {event!r} is not callable")
            events[str(event)] = hook
        return events
    events = {}
    for name in dir(observer):
        if name.startswith("_"):
            continue
        attr = getattr(observer, name, None)
        if not callable(attr) or inspect.isclass(attr):
            continue
        if isinstance(observer, ModuleType) and getattr(attr, "__module__", None) != observer.__name__:
            continue
        if _takes_three_positional(attr):
            events[name] = attr
    return events


def _instantiate(observer: Any) -> Any:
    observer = resolve(observer)
    if inspect.isclass(observer):
        return observer()
    return observer


def _runner(callbacks: tuple[Callbacks, ...]) -> Runner:
    if len(callbacks) == 1:
        (only,) = callbacks

        def run_one(compile_meta: Mapping[str, Any], runtime_meta: Any, work: Callable[[], Any]) -> Any:
            result = only.start(compile_meta, runtime_meta)
            started = time.perf_counter_ns()
            try:
                return work()
            finally:
                only.stop((time.perf_counter_ns() - started) // 1000, result)

        return run_one

    def run_many(compile_meta: Mapping[str, Any], runtime_meta: Any, work: Callable[[], Any]) -> Any:
        results = [cb.start(compile_meta, runtime_meta) for cb in callbacks]
        started = time.perf_counter_ns()
        try:
            return work()
        finally:
            elapsed = (time.perf_counter_ns() - started) // 1000
            for cb, result in zip(callbacks, results):
                cb.stop(elapsed, result)

    return run_many


def build_dispatch_table(observers: Iterable[Any]) -> Mapping[str, tuple[Callbacks, ...]]:
    """Group the hooks of *observers* by event, preserving observer order."""

    table: dict[str, list[Callbacks]] = {}
    for observer in observers:
        instance = _instantiate(observer)
        label = qualified_name(instance)
        for event, hook in observer_events(instance).items():
            table.setdefault(event, []).append(
                Callbacks(label, partial(hook, START), partial(hook, STOP))
            )
    return MappingProxyType({event: tuple(cbs) for event, cbs in table.items()})


class Instrumentation:
    """Compiled instrumentation of one endpoint."""

    def __init__(self, observers: Iterable[Any] = ()) -> None:
        self.table = build_dispatch_table(observers)
        self._runners: Mapping[str, Runner] = MappingProxyType(
            {event: _runner(cbs) for event, cbs in self.table.items()}
        )

    @property
    def events(self) -> frozenset[str]:
        return frozenset(self._runners)

    def interested(self, event: str) -> bool:
        return event in self._runners

    def instrument(
        self,
        event: str,
        compile_meta: Mapping[str, Any],
        runtime_meta: Any,
        work: Callable[[], T],
    ) -> T:
        """Run *work* and notify the observers of *event* around it."""

        runner = self._runners.get(event)
        if runner is None:
            return work()
        return runner(compile_meta, runtime_meta, work)


def caller_metadata(depth: int = 1) -> dict[str, Any]:
    """Describe the frame *depth* levels above the caller."""

    frame = sys._getframe(depth + 1)
    return {
        "module": frame.f_globals.get("__name__"),
        "function": frame.f_code.co_name,
        "file": frame.f_code.co_filename,
        "line": frame.f_lineno,
    }


def endpoint_for(target: Any) -> Any | None:
    """Return the endpoint behind *target*, or ``None`` if unresolvable."""

    if isinstance(target, Conn):
        return target.private.get("portico_endpoint")
    if hasattr(target, "instrumentation"):
        return target
    endpoint = getattr(target, "endpoint", None)
    if endpoint is not None and hasattr(endpoint, "instrumentation"):
        return endpoint
    return None


def instrument(
    target: Any,
    event: str,
    runtime_meta: Any,
    work: Callable[[], T],
    *,
    compile_meta: dict[str, Any] | None = None,
) -> T:
    """Instrument *work* through the endpoint found behind *target*.

    *target* may be an endpoint, a conn that went through an endpoint or a
    socket; when no endpoint can be found *work* runs uninstrumented.
    """

    endpoint = endpoint_for(target)
    if endpoint is None:
        return work()
    instrumentation: Instrumentation = endpoint.instrumentation
    if not instrumentation.interested(event):
        return work()
    if compile_meta is None:
        compile_meta = caller_metadata()
    return instrumentation.instrument(event, compile_meta, runtime_meta, work)


__all__ = [
    "START",
    "STOP",
    "Callbacks",
    "Instrumentation",
    "build_dispatch_table",
    "caller_metadata",
    "endpoint_for",
    "instrument",
    "observer_events",
]
