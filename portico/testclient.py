"""Simple in-memory HTTP client for endpoints."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import urlencode

from .endpoint import Endpoint
from .http import Request


@dataclass
class Response:
    """Container for HTTP response data."""

    status_code: int
    text: str
    headers: Mapping[str, str]
    content: bytes

    def json(self) -> Any:
        """Return the body parsed as JSON."""
        return json.loads(self.text)


class TestClient:
    """Execute requests against an ``Endpoint`` without a server.

    The endpoint is started on first use when it is not running yet.
    """

    __test__ = False  # prevent Pytest from treating this as a test case

    def __init__(
        self,
        endpoint: Endpoint,
        *,
        base_url: str = "http://localhost",
        remote_addr: str = "127.0.0.1",
    ) -> None:
        self.endpoint = endpoint
        self.base_url = base_url.rstrip("/")
        self.remote_addr = remote_addr

    def __enter__(self) -> "TestClient":
        self.endpoint.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.endpoint.stop()

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Mapping[str, Any] | None = None,
        body: bytes | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        """Send an HTTP request and return the response."""
        if body is not None and json_body is not None:
            raise ValueError("provide either json_body or body")
        request_headers = dict(headers or {})
        if json_body is not None:
            body = json.dumps(json_body).encode()
            request_headers.setdefault("content-type", "application/json")
        url = self.base_url + path
        if params:
            url += ("&" if "?" in path else "?") + urlencode(params)
        if not self.endpoint.started:
            self.endpoint.start()
        response = self.endpoint.handle(
            Request(
                method,
                url,
                body or b"",
                request_headers,
                remote_addr=self.remote_addr,
            )
        )
        status, content, resp_headers = response.serialize()
        try:
            text = content.decode()
        except UnicodeDecodeError:
            text = content.decode("latin1")
        return Response(status, text, resp_headers, content)

    def get(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        """Send a GET request."""
        return self.request("GET", path, params=params, headers=headers)

    def post(
        self,
        path: str,
        json_body: Mapping[str, Any] | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        """Send a POST request."""
        return self.request(
            "POST", path, json_body=json_body, params=params, headers=headers
        )

    def head(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        """Send a HEAD request."""
        return self.request("HEAD", path, params=params, headers=headers)


__all__ = ["Response", "TestClient"]
