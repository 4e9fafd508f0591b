"""Tests for the built-in tracing and latency observers."""

from portico.endpoint import EndpointBuilder
from portico.instrumenters import LatencyInstrumenter, TracingInstrumenter
from portico.testclient import TestClient


def ok(conn, opts):
    return conn.send_resp(200, "ok")


def test_tracing_instrumenter_records_spans(telemetry) -> None:
    builder = EndpointBuilder("Traced.Endpoint", "traced")
    builder.instrumenter(TracingInstrumenter(["portico_pipeline", "render_view"]))
    builder.plug(ok)
    endpoint = builder.compile()
    with TestClient(endpoint) as client:
        assert client.get("/").status_code == 200
        assert endpoint.instrument("render_view", {"template": "index"}, lambda: "html") == "html"
    spans = list(telemetry.get_traces())
    assert [span.name for span in spans] == ["portico_pipeline", "render_view"]
    render = spans[1]
    assert render.attributes["code.function"] == "test_tracing_instrumenter_records_spans"
    assert render.attributes["portico.duration_us"] >= 0


def test_latency_instrumenter_records_metrics(telemetry) -> None:
    endpoint = EndpointBuilder(
        "Timed.Endpoint",
        "timed",
        config={"instrumenters": [LatencyInstrumenter(["portico_pipeline"])]},
    )
    endpoint.plug(ok)
    with TestClient(endpoint.compile()) as client:
        client.get("/")
        client.get("/")
    assert telemetry.get_metric("portico_pipeline_total") == 2.0
    assert len(list(telemetry.get_latency_histogram("portico_pipeline"))) == 2
    assert "portico_pipeline_total 2.0" in telemetry.prometheus_metrics()


def test_instrumenters_only_handle_their_events() -> None:
    latency = LatencyInstrumenter(["a", "a", "b"])
    assert list(latency) == ["a", "b"]
    assert "c" not in latency
