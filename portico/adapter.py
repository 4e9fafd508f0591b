"""Derived endpoint values and the processes started alongside an endpoint.

Everything here works on the flat configuration entries of an endpoint
(what :class:`portico.config.ConfigStore` holds). Results are memoized by the
endpoint, not by this module.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess  # nosec B404
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Protocol

from infrastructure.configuration import resolve as resolve_env

_LOGGER = logging.getLogger("portico.endpoint")

DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True, slots=True)
class URL:
    """Base URL of an endpoint, without path information."""

    scheme: str
    host: str
    port: int

    def __str__(self) -> str:
        if DEFAULT_PORTS.get(self.scheme) == self.port:
            return f"{self.scheme}://{self.host}"
        return f"{self.scheme}://{self.host}:{self.port}"


def _listener_port(listener: Any) -> Any:
    if isinstance(listener, Mapping):
        return resolve_env(listener.get("port"))
    return None


def build_url(config: Mapping[str, Any], section: Mapping[str, Any] | None = None) -> URL:
    """Build the base URL from the ``url`` entry of *config*.

    *section* replaces ``config["url"]``; ``static_url`` derivations use it.
    The scheme and port fall back to the configured listeners.
    """

    url = section if section is not None else (config.get("url") or {})
    http = config.get("http") or None
    https = config.get("https") or None
    if https and not http:
        scheme, listener = "https", https
    else:
        scheme, listener = "http", http
    scheme = url.get("scheme") or scheme
    port = resolve_env(url.get("port"))
    if port in (None, ""):
        port = _listener_port(listener)
    if port in (None, ""):
        port = DEFAULT_PORTS.get(scheme, 80)
    return URL(scheme=scheme, host=url.get("host") or "localhost", port=int(port))


def build_static_url(config: Mapping[str, Any]) -> URL:
    """Like :func:`build_url` but preferring the ``static_url`` entry."""

    return build_url(config, config.get("static_url") or config.get("url") or {})


def path_prefix(path: str | None) -> str:
    """Return the prefix prepended to generated paths; ``""`` for the root."""

    if not path or path == "/":
        return ""
    return path.rstrip("/")


def load_manifest(root: str | os.PathLike[str], manifest: str | None) -> dict[str, str]:
    """Return ``{logical: digested}`` from the static manifest, if any."""

    if not manifest:
        return {}
    location = Path(root) / manifest
    try:
        data = json.loads(location.read_text(encoding="utf-8"))
    except FileNotFoundError:
        _LOGGER.error(
            "Could not find static manifest at %s. Run the digest task to generate it.",
            location,
        )
        return {}
    except json.JSONDecodeError as exc:
        _LOGGER.error("Static manifest at %s is not valid JSON: %s", location, exc)
        return {}
    if isinstance(data, dict) and isinstance(data.get("latest"), dict):
        data = data["latest"]
    if not isinstance(data, dict):
        return {}
    return {str(k).lstrip("/"): v for k, v in data.items() if isinstance(v, str)}


def static_lookup(
    root: str | os.PathLike[str], manifest: Mapping[str, str], asset: str
) -> str:
    """Return the versioned path of *asset*.

    Digested manifest entries win; otherwise a file under ``priv/static`` is
    versioned by size and modification time; anything else is returned as is.
    """

    if not asset.startswith("/"):
        raise ValueError(f"static paths must start with '/', got {asset!r}")
    relative = asset.lstrip("/")
    digested = manifest.get(relative)
    if digested:
        return "/" + digested.lstrip("/") + "?vsn=d"
    location = Path(root) / "priv" / "static" / relative
    if location.is_file():
        stat = location.stat()
        stamp = zlib.crc32(str(int(stat.st_mtime)).encode())
        return f"{asset}?vsn={stat.st_size}-{stamp}"
    return asset


class ServerHandle(Protocol):
    def stop(self) -> None:
        """Stop accepting requests and release the listener."""


class ServerAdapter(Protocol):
    """Starts a listener that feeds requests to ``endpoint.handle``."""

    def start(self, endpoint: Any, scheme: str, options: Mapping[str, Any]) -> ServerHandle:
        """Start serving *endpoint* over *scheme* with *options*."""


def listener_options(config: Mapping[str, Any], scheme: str) -> dict[str, Any]:
    """Return the ``http``/``https`` options with the port resolved."""

    options = dict(config.get(scheme) or {})
    port = resolve_env(options.get("port"))
    options["port"] = int(port) if port not in (None, "") else DEFAULT_PORTS[scheme]
    return options


def start_servers(
    endpoint: Any, adapter: ServerAdapter, config: Mapping[str, Any]
) -> list[ServerHandle]:
    """Start one listener per configured scheme.

    Listeners already started are stopped again when a later one fails.
    """

    handles: list[ServerHandle] = []
    try:
        for scheme in ("http", "https"):
            if not config.get(scheme):
                continue
            options = listener_options(config, scheme)
            handles.append(adapter.start(endpoint, scheme, options))
            _LOGGER.info(
                "Running %s with %s on %s",
                getattr(endpoint, "identity", endpoint),
                type(adapter).__name__,
                f"{scheme}://{options.get('host', 'localhost')}:{options['port']}",
            )
    except Exception:
        stop_all(handles)
        raise
    return handles


class Watcher:
    """External command run in the application root while serving."""

    def __init__(self, command: str, args: list[str], cwd: str | os.PathLike[str]) -> None:
        self.command = command
        self.args = list(args)
        self.cwd = cwd
        self.process: subprocess.Popen[bytes] | None = None

    def start(self) -> "Watcher":
        _LOGGER.debug("starting watcher %s %s in %s", self.command, self.args, self.cwd)
        self.process = subprocess.Popen(  # nosec B603
            [self.command, *self.args], cwd=self.cwd
        )
        return self

    def stop(self, timeout: float = 5.0) -> None:
        if self.process is None or self.process.poll() is not None:
            return
        self.process.terminate()
        try:
            self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self.process.kill()
            self.process.wait()


def start_watchers(config: Mapping[str, Any]) -> list[Watcher]:
    """Start the configured ``watchers`` in ``root``."""

    root = config.get("root") or "."
    started: list[Watcher] = []
    try:
        for command, args in config.get("watchers") or ():
            started.append(Watcher(command, list(args), root).start())
    except Exception:
        stop_all(started)
        raise
    return started


def stop_all(handles: list[Any]) -> None:
    """Stop *handles* in reverse start order."""

    for handle in reversed(handles):
        handle.stop()


__all__ = [
    "DEFAULT_PORTS",
    "ServerAdapter",
    "ServerHandle",
    "URL",
    "Watcher",
    "build_static_url",
    "build_url",
    "listener_options",
    "load_manifest",
    "path_prefix",
    "start_servers",
    "start_watchers",
    "static_lookup",
    "stop_all",
]
