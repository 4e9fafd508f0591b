"""Compile ordered plug declarations into a single handler.

A plug is either a function ``(conn, opts) -> conn`` or a *module plug*: a
class (or instance) exposing ``init(opts)`` and ``call(conn, opts)``. Module
plugs are initialized once, when the pipeline is compiled, and the value
returned by ``init`` is what every request sees as ``opts``.

Compilation wraps the enabled steps into nested closures, last step first,
so dispatching a request never revisits the declaration list.
"""

from __future__ import annotations

import inspect
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator

from .conn import Conn
from .exceptions import PipelineError
from .utils import qualified_name, resolve

_LOGGER = logging.getLogger("portico.pipeline")

Handler = Callable[[Conn], Conn]
PlugFunction = Callable[[Conn, Any], Conn]

# Most recent conn returned by a step of the pipeline running in this context.
_latest: ContextVar[Conn | None] = ContextVar("portico_latest_conn", default=None)


@dataclass(frozen=True, slots=True)
class PipelineStep:
    """A declared plug with its options."""

    plug: Any
    opts: Any = None
    enabled: bool = True


class Plug:
    """Base class for module plugs."""

    def init(self, opts: Any) -> Any:
        return opts

    def call(self, conn: Conn, opts: Any) -> Conn:
        return conn


def _identity(conn: Conn) -> Conn:
    return conn


def _is_module_plug(plug: Any) -> bool:
    return callable(getattr(plug, "init", None)) and callable(getattr(plug, "call", None))


def prepare(step: PipelineStep) -> tuple[PlugFunction, Any, str]:
    """Return ``(call, opts, name)`` for *step*, running ``init`` if needed."""

    plug = resolve(step.plug)
    name = qualified_name(plug)
    if inspect.isclass(plug):
        if not _is_module_plug(plug):
            raise PipelineError(plug, "module plugs must define init() and call()")
        plug = plug()
    if _is_module_plug(plug):
        return plug.call, plug.init(step.opts), name
    if callable(plug):
        return plug, step.opts, name
    raise PipelineError(plug, "is neither a function nor a module plug")


def _link(step: PipelineStep, nxt: Handler | None) -> Handler:
    call, opts, name = prepare(step)

    def run(conn: Conn) -> Conn:
        result = call(conn, opts)
        if not isinstance(result, Conn):
            raise PipelineError(
                step.plug, f"expected a Conn to be returned, got: {result!r}"
            )
        _latest.set(result)
        if result.halted:
            _LOGGER.debug("%s halted in %s", result.request_path, name)
            return result
        if nxt is None:
            return result
        return nxt(result)

    run.__qualname__ = f"pipeline[{name}]"
    return run


def compile_pipeline(steps: Iterable[PipelineStep]) -> Handler:
    """Build the handler running the enabled *steps* front to back."""

    enabled = [step for step in steps if step.enabled]
    if not enabled:
        return _identity
    handler = _link(enabled[-1], None)
    for step in reversed(enabled[:-1]):
        handler = _link(step, handler)
    return handler


@contextmanager
def tracking(conn: Conn) -> Iterator[Callable[[], Conn]]:
    """Yield a function returning the latest conn seen by the pipeline.

    Steps may return a different :class:`Conn` than they received; the
    function returns the last one a step handed back, or *conn* before any
    step has run.
    """

    token = _latest.set(conn)
    try:
        yield lambda: _latest.get() or conn
    finally:
        _latest.reset(token)


class PipelineBuilder:
    """Accumulate plugs and compile them once."""

    def __init__(self) -> None:
        self._steps: list[PipelineStep] = []

    @property
    def steps(self) -> tuple[PipelineStep, ...]:
        return tuple(self._steps)

    def plug(
        self, plug: Any, opts: Any = None, *, enabled: bool = True
    ) -> Any:
        """Append *plug*; returns it so the method works as a decorator."""

        self._steps.append(PipelineStep(plug, opts, enabled))
        return plug

    def prepend(self, plug: Any, opts: Any = None, *, enabled: bool = True) -> None:
        self._steps.insert(0, PipelineStep(plug, opts, enabled))

    def compile(self) -> Handler:
        return compile_pipeline(self._steps)


__all__ = [
    "Handler",
    "PipelineBuilder",
    "PipelineStep",
    "Plug",
    "compile_pipeline",
    "prepare",
    "tracking",
]
