"""Endpoint configuration loading and validation."""

from __future__ import annotations

from typing import Any, Literal, Mapping

from pydantic import (
    BaseModel,
    ConfigDict,
    ValidationError,
    field_validator,
    model_validator,
)

from infrastructure.configuration import SystemEnv, deferred, get_env, serve_endpoints

from .exceptions import ConfigError

Port = int | str | SystemEnv | None

# Keys read once when an endpoint is compiled; changing them later only
# updates the stored value.
COMPILE_TIME_KEYS = frozenset(
    {"code_reloader", "debug_errors", "render_errors", "instrumenters", "force_ssl"}
)


class _Section(BaseModel):
    model_config = ConfigDict(extra="allow", arbitrary_types_allowed=True)


class URLConfig(_Section):
    """``url`` / ``static_url`` section."""

    host: str | None = None
    scheme: Literal["http", "https"] | None = None
    path: str | None = None
    port: Port = None

    @field_validator("port", mode="before")
    @classmethod
    def _defer_port(cls, value: Any) -> Any:
        return deferred(value)

    @field_validator("path")
    @classmethod
    def _absolute_path(cls, value: str | None) -> str | None:
        if value is not None and not value.startswith("/"):
            raise ValueError("path must start with '/'")
        return value


class ListenerConfig(_Section):
    """``http`` / ``https`` section forwarded to the server adapter."""

    port: Port = None

    @field_validator("port", mode="before")
    @classmethod
    def _defer_port(cls, value: Any) -> Any:
        return deferred(value)


class RenderErrorsConfig(_Section):
    view: Any = None
    accepts: list[str] = ["html"]

    @field_validator("accepts")
    @classmethod
    def _non_empty(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("accepts must list at least one format")
        return value


class PubSubConfig(_Section):
    name: str | None = None
    adapter: Any = None

    @model_validator(mode="after")
    def _adapter_needs_name(self) -> "PubSubConfig":
        if self.adapter is not None and not self.name:
            raise ValueError(
                "an adapter was given to pubsub but no name was defined, "
                "please pass the name option accordingly"
            )
        return self


class EndpointConfig(_Section):
    """Validated endpoint configuration."""

    otp_app: str
    code_reloader: bool = False
    debug_errors: bool = False
    render_errors: RenderErrorsConfig = RenderErrorsConfig()
    instrumenters: list[Any] = []
    root: str = "."
    cache_static_lookup: bool = True
    cache_static_manifest: str | None = None
    check_origin: bool | list[str] = True
    http: Literal[False] | ListenerConfig = False
    https: Literal[False] | ListenerConfig = False
    force_ssl: dict[str, Any] | None = None
    reloadable_paths: list[str] = ["web"]
    secret_key_base: str | None = None
    server: bool = False
    url: URLConfig = URLConfig(host="localhost", path="/")
    static_url: URLConfig | None = None
    watchers: list[tuple[str, list[str]]] = []
    live_reload: dict[str, Any] = {}
    pubsub: PubSubConfig = PubSubConfig()

    @field_validator("force_ssl", mode="before")
    @classmethod
    def _force_ssl_options(cls, value: Any) -> Any:
        if value is True:
            return {}
        if value is False:
            return None
        return value

    @field_validator("watchers", mode="before")
    @classmethod
    def _watcher_pairs(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return [(command, list(args)) for command, args in value.items()]
        return value


def defaults(otp_app: str) -> dict[str, Any]:
    """Return the default configuration of an endpoint owned by *otp_app*."""

    return {
        "otp_app": otp_app,
        "code_reloader": False,
        "debug_errors": False,
        "render_errors": {"view": None, "accepts": ["html"]},
        "instrumenters": [],
        "root": ".",
        "cache_static_lookup": True,
        "cache_static_manifest": None,
        "check_origin": True,
        "http": False,
        "https": False,
        "reloadable_paths": ["web"],
        "secret_key_base": None,
        "server": serve_endpoints(),
        "url": {"host": "localhost", "path": "/"},
        "static_url": None,
        "pubsub": {"pool_size": 1},
        "watchers": [],
        "live_reload": {},
        "force_ssl": None,
    }


def merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge *override* into a copy of *base*."""

    result = dict(base)
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            result[key] = merge(current, value)
        else:
            result[key] = value
    return result


def validate(config: Mapping[str, Any], *, endpoint: str = "endpoint") -> dict[str, Any]:
    """Validate *config* and return it as plain entries.

    Raises
    ------
    ConfigError
        If any section is malformed.
    """

    try:
        model = EndpointConfig.model_validate(dict(config))
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        loc = first.get("loc") or ()
        key = str(loc[0]) if loc else None
        raise ConfigError(
            f"invalid configuration for {endpoint}: {exc}", key=key
        ) from exc
    return _plain(model)


def _plain(value: Any) -> Any:
    # Shallow unpacking: objects held in ``Any`` fields stay as given.
    if isinstance(value, _Section):
        data = {name: _plain(getattr(value, name)) for name in type(value).model_fields}
        data.update(value.model_extra or {})
        return data
    return value


def load_endpoint_config(
    otp_app: str,
    endpoint: str,
    overrides: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Merge defaults, the application environment and *overrides*."""

    if not otp_app:
        raise ConfigError("endpoint expects otp_app to be given", key="otp_app")
    merged = merge(defaults(otp_app), get_env(otp_app, endpoint))
    if overrides:
        merged = merge(merged, overrides)
    merged["otp_app"] = otp_app
    return validate(merged, endpoint=endpoint)


def normalize_changes(changed: Mapping[str, Any]) -> dict[str, Any]:
    """Prepare runtime *changed* entries, deferring environment references."""

    result: dict[str, Any] = {}
    for key, value in changed.items():
        if key in {"url", "static_url", "http", "https"} and isinstance(value, Mapping):
            value = {k: deferred(v) if k == "port" else v for k, v in value.items()}
        result[key] = value
    return result


__all__ = [
    "COMPILE_TIME_KEYS",
    "EndpointConfig",
    "ListenerConfig",
    "PubSubConfig",
    "RenderErrorsConfig",
    "URLConfig",
    "defaults",
    "load_endpoint_config",
    "merge",
    "normalize_changes",
    "validate",
]
