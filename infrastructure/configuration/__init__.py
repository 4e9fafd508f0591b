"""Application environment backing endpoint configuration.

Applications register endpoint settings under ``(otp_app, endpoint)`` either
programmatically through :func:`put_env` or from a TOML file through
:func:`load_config_file`::

    [my_app."MyApp.Endpoint"]
    secret_key_base = "..."
    url = { host = "example.com", port = { system = "PORT" } }

Values that reference the process environment (``{"system": "PORT"}`` or
``("system", "PORT")``) are kept as :class:`SystemEnv` markers and resolved
when they are read, not when they are loaded.
"""

from __future__ import annotations

import os
import threading
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

TRUTHY = {"1", "true", "yes", "on"}

_app_env: dict[str, dict[str, dict[str, Any]]] = {}
_app_env_lock = threading.Lock()
_serve_endpoints: bool | None = None


class SystemEnv:
    """Reference to an environment variable resolved on access."""

    __slots__ = ("name", "default")

    def __init__(self, name: str, default: str | None = None) -> None:
        self.name = name
        self.default = default

    def __repr__(self) -> str:
        return f"SystemEnv({self.name!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SystemEnv):
            return NotImplemented
        return (self.name, self.default) == (other.name, other.default)

    def __hash__(self) -> int:
        return hash((self.name, self.default))

    def resolve(self) -> str | None:
        return os.environ.get(self.name, self.default)


def deferred(value: Any) -> Any:
    """Turn ``("system", VAR)`` / ``{"system": VAR}`` into :class:`SystemEnv`."""

    if isinstance(value, SystemEnv):
        return value
    if (
        isinstance(value, (tuple, list))
        and len(value) == 2
        and value[0] == "system"
        and isinstance(value[1], str)
    ):
        return SystemEnv(value[1])
    if isinstance(value, Mapping) and set(value) <= {"system", "default"} and "system" in value:
        default = value.get("default")
        return SystemEnv(str(value["system"]), None if default is None else str(default))
    return value


def resolve(value: Any) -> Any:
    """Return *value* with a :class:`SystemEnv` marker resolved."""

    if isinstance(value, SystemEnv):
        return value.resolve()
    return value


@dataclass
class Settings:
    """Process-wide settings populated from ``PORTICO_*`` variables."""

    serve_endpoints: bool = False
    config_file: str | None = None


def validate_settings(settings: Settings) -> None:
    """Validate *settings*.

    Raises
    ------
    ValueError
        If the configured file does not exist.
    """

    if settings.config_file and not Path(settings.config_file).is_file():
        raise ValueError(f"Configuration file not found: {settings.config_file}")


def load_settings() -> Settings:
    """Return settings derived from the environment."""

    serve = os.getenv("PORTICO_SERVE_ENDPOINTS", "0").lower() in TRUTHY
    settings = Settings(
        serve_endpoints=serve,
        config_file=os.getenv("PORTICO_CONFIG") or None,
    )
    validate_settings(settings)
    return settings


def serve_endpoints() -> bool:
    """Return whether endpoints start their servers by default."""

    if _serve_endpoints is not None:
        return _serve_endpoints
    return os.getenv("PORTICO_SERVE_ENDPOINTS", "0").lower() in TRUTHY


def set_serve_endpoints(value: bool | None) -> None:
    """Override :func:`serve_endpoints`; ``None`` restores the env lookup."""

    global _serve_endpoints
    _serve_endpoints = value


def _copy_tree(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _copy_tree(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_copy_tree(v) for v in value]
    return value


def put_env(otp_app: str, endpoint: str, config: Mapping[str, Any]) -> None:
    """Store *config* for *endpoint* of application *otp_app*."""

    with _app_env_lock:
        _app_env.setdefault(otp_app, {})[endpoint] = dict(config)


def get_env(otp_app: str, endpoint: str) -> dict[str, Any]:
    """Return a copy of the settings stored for *endpoint*.

    Nested dicts and lists are copied; other values are shared.
    """

    with _app_env_lock:
        return _copy_tree(_app_env.get(otp_app, {}).get(endpoint, {}))


def delete_env(otp_app: str, endpoint: str | None = None) -> None:
    """Forget settings of *endpoint*, or of the whole application."""

    with _app_env_lock:
        if endpoint is None:
            _app_env.pop(otp_app, None)
        else:
            _app_env.get(otp_app, {}).pop(endpoint, None)


def clear_env() -> None:
    with _app_env_lock:
        _app_env.clear()


def load_config_file(path: str | os.PathLike[str]) -> list[tuple[str, str]]:
    """Load a TOML file into the application environment.

    Returns the ``(otp_app, endpoint)`` pairs that were stored. Malformed
    files raise :class:`ValueError`.
    """

    data = tomllib.loads(Path(path).read_text(encoding="utf-8"))
    loaded: list[tuple[str, str]] = []
    for otp_app, endpoints in data.items():
        if not isinstance(endpoints, dict):
            raise ValueError(
                f"Expected a table of endpoints under '{otp_app}', got {type(endpoints).__name__}"
            )
        for endpoint, config in endpoints.items():
            if not isinstance(config, dict):
                raise ValueError(f"Expected a table for '{otp_app}.{endpoint}'")
            put_env(otp_app, endpoint, config)
            loaded.append((otp_app, endpoint))
    return loaded


__all__ = [
    "Settings",
    "SystemEnv",
    "clear_env",
    "deferred",
    "delete_env",
    "get_env",
    "load_config_file",
    "load_settings",
    "put_env",
    "resolve",
    "serve_endpoints",
    "set_serve_endpoints",
    "validate_settings",
]
