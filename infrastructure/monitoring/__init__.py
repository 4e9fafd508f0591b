"""Tracing and in-process metrics backing the built-in instrumenters."""

from __future__ import annotations

import logging
import os
import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

_exporter_choice = os.getenv("OTEL_TRACES_EXPORTER", "inmemory")

if _exporter_choice == "console":
    _span_exporter: InMemorySpanExporter | ConsoleSpanExporter = ConsoleSpanExporter()
else:
    _span_exporter = InMemorySpanExporter()
_tracer_provider = TracerProvider()
_tracer_provider.add_span_processor(SimpleSpanProcessor(_span_exporter))
_tracer = _tracer_provider.get_tracer("portico")

_metrics: Dict[str, float] = {}
_latency_histograms: Dict[str, list[float]] = defaultdict(list)
_lock = threading.Lock()

_OBSERVABILITY_LOGGER = logging.getLogger("portico.observability")


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None) -> Iterator[trace.Span]:
    """Context manager yielding an active span named *name*."""

    with _tracer.start_as_current_span(name, attributes=attributes) as span:
        yield span


def open_span(name: str, attributes: dict[str, Any] | None = None) -> trace.Span:
    """Start a span that is ended later with :func:`close_span`."""

    return _tracer.start_span(name, attributes=attributes)


def close_span(span: trace.Span, **attributes: Any) -> None:
    """Record *attributes* on *span* and end it."""

    for key, value in attributes.items():
        span.set_attribute(key, value)
    span.end()


def get_traces() -> Iterable[object]:
    """Retrieve finished spans when the in-memory exporter is active."""

    if isinstance(_span_exporter, InMemorySpanExporter):
        return _span_exporter.get_finished_spans()
    return ()


def reset_traces() -> None:
    if isinstance(_span_exporter, InMemorySpanExporter):
        _span_exporter.clear()


def get_exporter_choice() -> str:
    """Expose which tracing exporter is active."""

    return _exporter_choice


def record_metric(name: str, value: float) -> None:
    """Store a metric value."""

    with _lock:
        _metrics[name] = value


def increment_metric(name: str, amount: float = 1.0) -> float:
    """Add *amount* to metric *name* and return the new value."""

    with _lock:
        value = _metrics.get(name, 0.0) + amount
        _metrics[name] = value
    return value


def get_metric(name: str) -> float:
    """Retrieve a recorded metric."""

    return _metrics.get(name, 0.0)


def record_latency(event: str, duration_ms: float) -> None:
    """Record latency for *event* in milliseconds."""

    with _lock:
        _latency_histograms[event].append(duration_ms)


def get_latency_histogram(event: str) -> Iterable[float]:
    """Return recorded latencies for *event*."""

    return list(_latency_histograms.get(event, []))


def prometheus_metrics() -> str:
    """Render recorded metrics in Prometheus text format."""

    return "\n".join(f"{k} {v}" for k, v in _metrics.items())


def reset_metrics() -> None:
    with _lock:
        _metrics.clear()
        _latency_histograms.clear()
    _OBSERVABILITY_LOGGER.debug("metrics reset")


__all__ = [
    "close_span",
    "get_exporter_choice",
    "get_latency_histogram",
    "get_metric",
    "get_traces",
    "increment_metric",
    "open_span",
    "prometheus_metrics",
    "record_latency",
    "record_metric",
    "reset_metrics",
    "reset_traces",
    "start_span",
]
