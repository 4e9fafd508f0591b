"""Plugs and error renderers wired in by endpoint configuration."""

from __future__ import annotations

import html
import json
import mimetypes
import traceback
from http import HTTPStatus
from typing import Any, Iterable

from .conn import Conn
from .pipeline import Plug
from .utils import resolve

FORMAT_CONTENT_TYPES = {
    "html": "text/html; charset=utf-8",
    "json": "application/json",
    "text": "text/plain; charset=utf-8",
    "txt": "text/plain; charset=utf-8",
}
_MEDIA_FORMATS = {
    "text/html": "html",
    "application/xhtml+xml": "html",
    "application/json": "json",
    "text/plain": "text",
}


class ForceSSL(Plug):
    """Redirect plain HTTP requests to HTTPS and set HSTS on secure ones.

    Options: ``host`` (redirect target host), ``hsts`` (default ``True``),
    ``expires`` (HSTS max-age, default one year), ``subdomains`` and
    ``rewrite_on`` (headers such as ``x-forwarded-proto`` trusted to carry
    the client-facing scheme).
    """

    def init(self, opts: Any) -> dict[str, Any]:
        opts = dict(opts or {})
        return {
            "host": opts.get("host"),
            "hsts": opts.get("hsts", True),
            "expires": int(opts.get("expires", 31_536_000)),
            "subdomains": bool(opts.get("subdomains", False)),
            "rewrite_on": [h.lower() for h in opts.get("rewrite_on", [])],
        }

    def call(self, conn: Conn, opts: dict[str, Any]) -> Conn:
        if "x-forwarded-proto" in opts["rewrite_on"]:
            forwarded = conn.get_req_header("x-forwarded-proto")
            if forwarded in {"http", "https"}:
                conn.scheme = forwarded
        if conn.scheme == "https":
            if opts["hsts"]:
                value = f"max-age={opts['expires']}"
                if opts["subdomains"]:
                    value += "; includeSubDomains"
                conn.put_resp_header("strict-transport-security", value)
            return conn
        host = opts["host"] or conn.host
        location = f"https://{host}{conn.request_path}"
        if conn.query_string:
            location += "?" + conn.query_string
        status = 301 if conn.method in {"GET", "HEAD"} else 307
        conn.put_resp_header("location", location)
        return conn.send_resp(status, b"").halt()


def status_for(exc: BaseException) -> int:
    """Return the HTTP status carried by *exc*, defaulting to 500."""

    for attr in ("status_code", "plug_status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and 400 <= value <= 599:
            return value
    return 500


def negotiate_format(conn: Conn, accepts: Iterable[str]) -> str:
    """Pick the error format from ``_format`` or the ``accept`` header."""

    accepts = list(accepts)
    requested = conn.query_params.get("_format")
    if requested in accepts:
        return requested
    for part in (conn.get_req_header("accept") or "").split(","):
        media = part.split(";", 1)[0].strip().lower()
        if media == "*/*":
            return accepts[0]
        fmt = _MEDIA_FORMATS.get(media)
        if fmt in accepts:
            return fmt
    return accepts[0]


def content_type_for(fmt: str) -> str:
    known = FORMAT_CONTENT_TYPES.get(fmt)
    if known:
        return known
    return mimetypes.types_map.get(f".{fmt}", "application/octet-stream")


class DefaultErrorView:
    """Error view used when ``render_errors`` names no view."""

    @staticmethod
    def render(template: str, assigns: dict[str, Any]) -> Any:
        status, _, fmt = template.partition(".")
        try:
            message = HTTPStatus(int(status)).phrase
        except ValueError:
            message = "Internal Server Error"
        if fmt == "json":
            return {"errors": {"detail": message}}
        return message


class RenderErrors:
    """Translate a pipeline fault into a response through an error view.

    The view is called as ``view.render("<status>.<format>", assigns)`` with
    assigns ``conn``, ``kind``, ``reason``, ``stack`` and ``status``. A fault
    raised by the view propagates.
    """

    def __init__(self, view: Any = None, accepts: Iterable[str] = ("html",)) -> None:
        self.view = resolve(view) if view is not None else DefaultErrorView
        self.accepts = tuple(accepts) or ("html",)

    def render(self, conn: Conn, exc: BaseException) -> Conn:
        status = status_for(exc)
        fmt = negotiate_format(conn, self.accepts)
        assigns = {
            "conn": conn,
            "kind": "error",
            "reason": exc,
            "stack": traceback.extract_tb(exc.__traceback__),
            "status": status,
        }
        body = self.view.render(f"{status}.{fmt}", assigns)
        if not isinstance(body, (str, bytes)):
            body = json.dumps(body)
        conn.state = "unset"
        conn.halted = True
        conn.put_resp_content_type(content_type_for(fmt))
        return conn.send_resp(status, body)


class Debugger:
    """Render faults with their traceback; for development only."""

    def render(self, conn: Conn, exc: BaseException) -> Conn:
        status = status_for(exc)
        frames = traceback.format_exception(type(exc), exc, exc.__traceback__)
        title = f"{type(exc).__name__} at {conn.method} {conn.request_path}"
        accept = (conn.get_req_header("accept") or "").lower()
        conn.state = "unset"
        conn.halted = True
        if "html" in accept or not accept:
            body = (
                "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
                f"<title>{html.escape(title)}</title></head><body>"
                f"<h1>{html.escape(title)}</h1>"
                f"<p>{html.escape(str(exc))}</p>"
                f"<pre>{html.escape(''.join(frames))}</pre>"
                "</body></html>"
            )
            conn.put_resp_content_type(FORMAT_CONTENT_TYPES["html"])
        else:
            body = f"# {title}\n\n{exc}\n\n{''.join(frames)}"
            conn.put_resp_content_type(FORMAT_CONTENT_TYPES["text"])
        return conn.send_resp(status, body)


__all__ = [
    "DefaultErrorView",
    "Debugger",
    "ForceSSL",
    "RenderErrors",
    "content_type_for",
    "negotiate_format",
    "status_for",
]
