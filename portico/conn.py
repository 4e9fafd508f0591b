"""Request context threaded through an endpoint pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal
from urllib.parse import parse_qs

from .exceptions import AlreadySentError
from .http import Request, Response

State = Literal["unset", "set", "sent"]


def split_path(path: str) -> list[str]:
    """Split *path* into its non-empty segments."""

    return [segment for segment in path.split("/") if segment]


@dataclass(slots=True)
class Conn:
    """State of a single request and its response.

    A conn is owned by the task handling the request; pipeline steps receive
    it, update it and return it.
    """

    method: str = "GET"
    scheme: str = "http"
    host: str = "localhost"
    port: int = 80
    request_path: str = "/"
    path_info: list[str] = field(default_factory=list)
    script_name: list[str] = field(default_factory=list)
    query_string: str = ""
    req_headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    remote_addr: str | None = None
    assigns: dict[str, Any] = field(default_factory=dict)
    private: dict[str, Any] = field(default_factory=dict)
    secret_key_base: str | None = None
    halted: bool = False
    state: State = "unset"
    status: int | None = None
    resp_body: bytes = b""
    resp_headers: dict[str, str] = field(default_factory=dict)
    resp_cookies: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_request(cls, request: Request) -> "Conn":
        return cls(
            method=request.method,
            scheme=request.scheme,
            host=request.host,
            port=request.port,
            request_path=request.path,
            path_info=split_path(request.path),
            query_string=request.query_string,
            req_headers=dict(request.headers),
            body=request.body,
            remote_addr=request.remote_addr,
        )

    @property
    def query_params(self) -> dict[str, str]:
        return {k: v[-1] for k, v in parse_qs(self.query_string).items()}

    def get_req_header(self, name: str) -> str | None:
        return self.req_headers.get(name.lower())

    def assign(self, key: str, value: Any) -> "Conn":
        self.assigns[key] = value
        return self

    def put_private(self, key: str, value: Any) -> "Conn":
        self.private[key] = value
        return self

    def halt(self) -> "Conn":
        """Stop the pipeline after the current step."""

        self.halted = True
        return self

    def put_status(self, status: int) -> "Conn":
        self.status = status
        return self

    def put_resp_header(self, key: str, value: str) -> "Conn":
        self.resp_headers[key.lower()] = value
        return self

    def put_resp_cookie(self, key: str, value: str) -> "Conn":
        self.resp_cookies[key] = value
        return self

    def put_resp_content_type(self, content_type: str) -> "Conn":
        return self.put_resp_header("content-type", content_type)

    def resp(self, status: int, body: str | bytes) -> "Conn":
        """Set the response without sending it."""

        if self.state == "sent":
            raise AlreadySentError("the response was already sent")
        self.status = status
        self.resp_body = body.encode() if isinstance(body, str) else body
        self.state = "set"
        return self

    def send_resp(
        self, status: int | None = None, body: str | bytes | None = None
    ) -> "Conn":
        """Mark the response as sent, setting it first when given."""

        if status is not None:
            self.resp(status, b"" if body is None else body)
        if self.state == "sent":
            raise AlreadySentError("the response was already sent")
        if self.state == "unset":
            raise ValueError("cannot send a response that was not set")
        self.state = "sent"
        return self

    def to_response(self) -> Response:
        response = Response(
            self.resp_body,
            status_code=self.status or 200,
            headers=self.resp_headers,
        )
        for key, value in self.resp_cookies.items():
            response.set_cookie(key, value)
        return response


__all__ = ["Conn", "split_path"]
