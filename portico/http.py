"""Transport-facing request and response containers."""

from __future__ import annotations

from http.cookies import SimpleCookie
from typing import Any, Mapping
from urllib.parse import parse_qs, urlsplit


class Request:
    """Represent an incoming HTTP request as handed over by a server."""

    def __init__(
        self,
        method: str = "GET",
        url: str = "/",
        body: bytes = b"",
        headers: Mapping[str, str] | None = None,
        *,
        scheme: str | None = None,
        host: str | None = None,
        port: int | None = None,
        remote_addr: str | None = None,
    ) -> None:
        self.method = method.upper()
        self.url = url
        self.body = body
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        parts = urlsplit(url)
        self.path = parts.path or "/"
        self.query_string = parts.query
        self.scheme = scheme or parts.scheme or "http"
        host_header = self.headers.get("host", "")
        header_host, _, header_port = host_header.partition(":")
        self.host = host or parts.hostname or header_host or "localhost"
        if port is None:
            port = parts.port or (int(header_port) if header_port.isdigit() else None)
        self.port = port or (443 if self.scheme == "https" else 80)
        self.remote_addr = remote_addr

    @property
    def query_params(self) -> dict[str, str | list[str]]:
        return {
            k: (v[0] if len(v) == 1 else v)
            for k, v in parse_qs(self.query_string).items()
        }


class Response:
    """HTTP response container with header and cookie management."""

    def __init__(
        self,
        content: str | bytes = b"",
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
        media_type: str | None = None,
    ) -> None:
        if isinstance(content, str):
            self.body = content.encode()
            default_type = "text/plain; charset=utf-8"
        else:
            self.body = content
            default_type = "application/octet-stream"
        self.status_code = status_code
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.media_type = media_type or self.headers.get("content-type") or default_type
        self.headers.setdefault("content-type", self.media_type)
        self._cookies: SimpleCookie = SimpleCookie()

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def set_header(self, key: str, value: str) -> None:
        """Set or replace a header."""
        self.headers[key.lower()] = value

    def set_cookie(self, key: str, value: str, **params: Any) -> None:
        """Attach a cookie to the response."""
        self._cookies[key] = value
        for k, v in params.items():
            self._cookies[key][k.replace("_", "-")] = str(v)

    def serialize(self) -> tuple[int, bytes, dict[str, str]]:
        """Return ``(status_code, body, headers)`` for transmission."""
        headers = self.headers.copy()
        if self._cookies:
            headers["set-cookie"] = self._cookies.output(
                header="",
                sep="; ",
            ).strip()
        return self.status_code, self.body, headers


__all__ = ["Request", "Response"]
