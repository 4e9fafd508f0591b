"""Tests for the in-memory test client."""

import json

import pytest

from portico.endpoint import EndpointBuilder
from portico.testclient import TestClient


def echo(conn, opts):
    conn.put_resp_content_type("application/json")
    conn.put_resp_cookie("seen", "1")
    return conn.send_resp(
        200,
        json.dumps(
            {
                "method": conn.method,
                "path": conn.request_path,
                "params": conn.query_params,
                "body": conn.body.decode(),
                "host": conn.host,
                "remote_addr": conn.remote_addr,
                "content_type": conn.get_req_header("content-type"),
            }
        ),
    )


@pytest.fixture
def client():
    builder = EndpointBuilder("Echo.Endpoint", "echo")
    builder.plug(echo)
    with TestClient(builder.compile()) as test_client:
        yield test_client


def test_get_with_params(client) -> None:
    data = client.get("/items", params={"page": 2}).json()
    assert data["method"] == "GET"
    assert data["path"] == "/items"
    assert data["params"] == {"page": "2"}
    assert data["host"] == "localhost"
    assert data["remote_addr"] == "127.0.0.1"


def test_post_json_body(client) -> None:
    response = client.post("/items", json_body={"name": "x"})
    data = response.json()
    assert json.loads(data["body"]) == {"name": "x"}
    assert data["content_type"] == "application/json"
    assert response.headers["content-type"] == "application/json"
    assert "seen=1" in response.headers["set-cookie"]


def test_head_request(client) -> None:
    assert client.head("/").status_code == 200


def test_body_and_json_are_exclusive(client) -> None:
    with pytest.raises(ValueError):
        client.request("POST", "/", json_body={"a": 1}, body=b"raw")


def test_client_starts_the_endpoint_on_demand() -> None:
    builder = EndpointBuilder("Lazy.Endpoint", "lazy")
    builder.plug(echo)
    endpoint = builder.compile()
    client = TestClient(endpoint)
    assert not endpoint.started
    assert client.get("/").status_code == 200
    assert endpoint.started
    endpoint.stop()
