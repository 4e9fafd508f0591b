"""Endpoints: the boundary where every request to an application starts.

An endpoint is declared with an :class:`EndpointBuilder` and turned into an
immutable :class:`Endpoint` by :meth:`EndpointBuilder.compile`::

    builder = EndpointBuilder("MyApp.Endpoint", "my_app")
    builder.socket("/socket", "my_app.sockets:UserSocket")
    builder.plug(log_request)
    builder.plug(router)
    endpoint = builder.compile().start()

    response = endpoint.handle(Request("GET", "/"))

Compiling loads the configuration (defaults, application environment and
overrides), bakes the compile-time keys into the endpoint and resolves the
pipeline and instrumentation tables. Runtime keys live in a
:class:`~portico.config.ConfigStore` table created by :meth:`Endpoint.start`.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, TypeVar

from . import channel, pubsub
from .adapter import (
    URL,
    ServerAdapter,
    build_static_url,
    build_url,
    load_manifest,
    path_prefix,
    start_servers,
    start_watchers,
    static_lookup,
    stop_all,
)
from .config import ConfigStore
from .conn import Conn, split_path
from .exceptions import ConfigError, PorticoError
from .http import Request, Response
from .instrument import Instrumentation, caller_metadata
from .pipeline import Handler, PipelineBuilder, PipelineStep, compile_pipeline, tracking
from .plugs import Debugger, ForceSSL, RenderErrors
from .settings import COMPILE_TIME_KEYS, load_endpoint_config, normalize_changes
from .sockets import SocketMount, SocketRegistry
from .utils import resolve

_LOGGER = logging.getLogger("portico.endpoint")

PIPELINE_EVENT = "portico_pipeline"

T = TypeVar("T")


class EndpointBuilder:
    """Collect plugs, socket mounts and observers of an endpoint."""

    def __init__(
        self,
        identity: str,
        otp_app: str,
        *,
        config: Mapping[str, Any] | None = None,
        store: ConfigStore | None = None,
        server_adapter: ServerAdapter | None = None,
    ) -> None:
        self.identity = identity
        self.otp_app = otp_app
        self.overrides = dict(config or {})
        self.store = store
        self.server_adapter = server_adapter
        self._pipeline = PipelineBuilder()
        self._sockets = SocketRegistry()
        self._instrumenters: list[Any] = []

    def plug(self, plug: Any, opts: Any = None, *, enabled: bool = True) -> Any:
        """Append *plug* to the pipeline; usable as a decorator."""

        return self._pipeline.plug(plug, opts, enabled=enabled)

    def socket(self, path: str, handler: Any) -> SocketMount:
        """Mount socket *handler* (an object or import string) at *path*."""

        return self._sockets.register(path, handler)

    def instrumenter(self, observer: Any) -> Any:
        """Add *observer* after the configured ``instrumenters``."""

        self._instrumenters.append(observer)
        return observer

    @property
    def steps(self) -> tuple[PipelineStep, ...]:
        return self._pipeline.steps

    def compile(self) -> "Endpoint":
        """Load the configuration and build the endpoint.

        Raises
        ------
        ConfigError
            If the configuration is invalid.
        """

        config = load_endpoint_config(self.otp_app, self.identity, self.overrides)
        steps = list(self._pipeline.steps)
        if config["force_ssl"] is not None:
            opts = dict(config["force_ssl"])
            opts.setdefault("host", (config["url"] or {}).get("host") or "localhost")
            steps.insert(0, PipelineStep(ForceSSL, opts))
        if config["debug_errors"]:
            renderer: Any = Debugger()
        else:
            render_errors = config["render_errors"]
            renderer = RenderErrors(
                view=render_errors.get("view"),
                accepts=render_errors.get("accepts") or ("html",),
            )
        instrumentation = Instrumentation([*config["instrumenters"], *self._instrumenters])
        return Endpoint(
            identity=self.identity,
            otp_app=self.otp_app,
            config=config,
            steps=tuple(steps),
            handler=compile_pipeline(steps),
            sockets=self._sockets.mounts(),
            instrumentation=instrumentation,
            renderer=renderer,
            store=self.store if self.store is not None else ConfigStore(),
            server_adapter=self.server_adapter,
            compile_meta=caller_metadata(),
        )


class Endpoint:
    """A compiled endpoint.

    The endpoint is also a module plug (``init``/``call``), so it can be
    mounted inside another pipeline.
    """

    def __init__(
        self,
        *,
        identity: str,
        otp_app: str,
        config: dict[str, Any],
        steps: tuple[PipelineStep, ...],
        handler: Handler,
        sockets: tuple[SocketMount, ...],
        instrumentation: Instrumentation,
        renderer: Any,
        store: ConfigStore,
        server_adapter: ServerAdapter | None = None,
        compile_meta: dict[str, Any] | None = None,
    ) -> None:
        self.identity = identity
        self.otp_app = otp_app
        self.steps = steps
        self.instrumentation = instrumentation
        self.store = store
        self.server_adapter = server_adapter
        self.code_reloading: bool = config["code_reloader"]
        self.debug_errors: bool = config["debug_errors"]
        self.pubsub_server: str | None = config["pubsub"].get("name")
        self._initial = config
        self._handler = handler
        self._sockets = sockets
        self._renderer = renderer
        self._compile_meta = compile_meta or {}
        self._pipeline_meta = MappingProxyType({**self._compile_meta, "endpoint": identity})
        url_path = (config["url"] or {}).get("path") or "/"
        static_section = config["static_url"] or config["url"] or {}
        self._prefix = path_prefix(url_path)
        self._script_name = split_path(url_path)
        self._static_prefix = path_prefix(static_section.get("path"))
        self._servers: list[Any] = []
        self._watchers: list[Any] = []
        self._pubsub_started = False

    def __repr__(self) -> str:
        return f"<Endpoint {self.identity} otp_app={self.otp_app!r}>"

    # -- lifecycle ---------------------------------------------------------

    @property
    def started(self) -> bool:
        return self.store.exists(self.identity)

    def start(self) -> "Endpoint":
        """Create the configuration table and start servers and pub/sub.

        Raises
        ------
        ConfigError
            If ``server`` is enabled without ``secret_key_base`` or without a
            server adapter for the configured listeners.
        """

        if self.started:
            return self
        config = self._initial
        self.store.create(self.identity, config)
        try:
            self._start_pubsub(config["pubsub"])
            if config["server"]:
                self._start_server(config)
            elif config["http"] or config["https"]:
                _LOGGER.info(
                    "Configuration server was not enabled for %s, "
                    "http/https services won't start",
                    self.identity,
                )
            self._warmup()
        except Exception:
            self.stop()
            raise
        return self

    start_link = start

    def _start_pubsub(self, options: Mapping[str, Any]) -> None:
        adapter = options.get("adapter")
        if adapter is None:
            return
        extra = {k: v for k, v in options.items() if k not in {"adapter", "name"}}
        pubsub.start(resolve(adapter), options["name"], **extra)
        self._pubsub_started = True

    def _start_server(self, config: Mapping[str, Any]) -> None:
        if not config.get("secret_key_base"):
            raise ConfigError(
                f"{self.identity} cannot serve requests without secret_key_base",
                key="secret_key_base",
            )
        if config["http"] or config["https"]:
            if self.server_adapter is None:
                raise ConfigError(
                    f"{self.identity} has http/https configured but no server adapter",
                    key="server",
                )
            self._servers = start_servers(self, self.server_adapter, config)
        self._watchers = start_watchers(config)

    def _warmup(self) -> None:
        if not self.config("cache_static_lookup", True):
            return
        for logical in self._manifest():
            self.static_path("/" + logical)

    def stop(self) -> None:
        """Stop servers, watchers and pub/sub, and drop the table."""

        stop_all(self._watchers)
        stop_all(self._servers)
        self._watchers, self._servers = [], []
        if self._pubsub_started and self.pubsub_server:
            pubsub.unregister(self.pubsub_server)
            self._pubsub_started = False
        self.store.drop(self.identity)

    def __enter__(self) -> "Endpoint":
        return self.start()

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    # -- configuration -----------------------------------------------------

    def config(self, key: str, default: Any = None) -> Any:
        """Return the runtime configuration value of *key*, or *default*."""

        return self.store.get(self.identity, key, default)

    def config_change(self, changed: Mapping[str, Any], removed: Iterable[str] = ()) -> None:
        """Apply application environment changes to the runtime table.

        Compile-time keys are stored but keep their compiled behaviour until
        the endpoint is rebuilt.
        """

        removed = tuple(removed)
        stale = COMPILE_TIME_KEYS.intersection([*changed, *removed])
        if stale:
            _LOGGER.debug(
                "%s compile-time keys changed, recompile to apply: %s",
                self.identity,
                ", ".join(sorted(stale)),
            )
        self.store.update(self.identity, normalize_changes(changed), removed)

    def sockets(self) -> tuple[SocketMount, ...]:
        return self._sockets

    # -- request dispatch --------------------------------------------------

    def init(self, opts: Any) -> Any:
        return opts

    def call(self, conn: Conn, opts: Any = None) -> Conn:
        """Run *conn* through the pipeline, rendering faults as responses.

        Only faults raised by the pipeline are rendered; observer faults and
        faults raised after a response was sent propagate.
        """

        conn.secret_key_base = self.config("secret_key_base")
        conn.put_private("portico_endpoint", self)
        if self._script_name:
            conn.script_name = [*conn.script_name, *self._script_name]
        return self.instrumentation.instrument(
            PIPELINE_EVENT,
            self._pipeline_meta,
            {"conn": conn},
            lambda: self._guarded_dispatch(conn),
        )

    def _guarded_dispatch(self, conn: Conn) -> Conn:
        with tracking(conn) as latest:
            try:
                return self._dispatch(conn)
            except Exception as exc:
                current = latest()
                if current.state == "sent":
                    raise
                _LOGGER.exception(
                    "%s failed on %s %s",
                    self.identity,
                    current.method,
                    current.request_path,
                )
                return self._renderer.render(current, exc)

    def _dispatch(self, conn: Conn) -> Conn:
        conn = self._handler(conn)
        if conn.state == "set":
            conn.send_resp()
        elif conn.state == "unset":
            raise PorticoError(
                f"{self.identity} pipeline finished without sending a response"
            )
        return conn

    def handle(self, request: Request) -> Response:
        """Serve *request* and return the response."""

        return self.call(Conn.from_request(request)).to_response()

    # -- paths and urls ----------------------------------------------------

    def path(self, suffix: str) -> str:
        """Return *suffix* under the endpoint's mount path."""

        return self._prefix + suffix

    def static_path(self, asset: str) -> str:
        """Return the versioned path of static *asset* (starting with ``/``)."""

        if not self.config("cache_static_lookup", True):
            return self._static_prefix + self._lookup(asset)
        return self._static_prefix + self.store.cache(
            self.identity, ("static", asset), lambda: self._lookup(asset)
        )

    def _manifest(self) -> dict[str, str]:
        return self.store.cache(
            self.identity,
            ("static_manifest",),
            lambda: load_manifest(
                self.config("root", "."), self.config("cache_static_manifest")
            ),
        )

    def _lookup(self, asset: str) -> str:
        return static_lookup(self.config("root", "."), self._manifest(), asset)

    def struct_url(self) -> URL:
        """Return the base URL (no path) as a :class:`~portico.adapter.URL`."""

        return self.store.cache(
            self.identity, ("struct_url",), lambda: build_url(self.runtime_config())
        )

    def url(self) -> str:
        """Return the base URL without path information."""

        return self.store.cache(
            self.identity, ("url",), lambda: str(build_url(self.runtime_config()))
        )

    def static_url(self) -> str:
        """Return the static base URL, falling back to :meth:`url`'s settings."""

        return self.store.cache(
            self.identity, ("static_url",), lambda: str(build_static_url(self.runtime_config()))
        )

    def runtime_config(self) -> dict[str, Any]:
        """Return the runtime configuration, or the compiled one before start."""

        if self.started:
            return self.store.snapshot(self.identity)
        return dict(self._initial)

    # -- instrumentation ---------------------------------------------------

    def instrument(self, event: str, runtime_meta: Any, work: Callable[[], T]) -> T:
        """Run *work* notifying the observers of *event* around it."""

        if not self.instrumentation.interested(event):
            return work()
        return self.instrumentation.instrument(event, caller_metadata(), runtime_meta, work)

    # -- pub/sub -----------------------------------------------------------

    def subscribe(self, subscriber: Any, topic: str, **opts: Any) -> None:
        pubsub.subscribe(self.pubsub_server, subscriber, topic, **opts)

    def unsubscribe(self, subscriber: Any, topic: str) -> None:
        pubsub.unsubscribe(self.pubsub_server, subscriber, topic)

    def broadcast(self, topic: str, event: str, payload: dict[str, Any]) -> bool:
        return channel.broadcast(self.pubsub_server, topic, event, payload)

    def broadcast_strict(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        channel.broadcast_strict(self.pubsub_server, topic, event, payload)

    def broadcast_from(
        self, sender: Any, topic: str, event: str, payload: dict[str, Any]
    ) -> bool:
        return channel.broadcast_from(self.pubsub_server, sender, topic, event, payload)

    def broadcast_from_strict(
        self, sender: Any, topic: str, event: str, payload: dict[str, Any]
    ) -> None:
        channel.broadcast_from_strict(self.pubsub_server, sender, topic, event, payload)


__all__ = ["PIPELINE_EVENT", "Endpoint", "EndpointBuilder"]
