"""Command line tooling for portico endpoints."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from dataclasses import dataclass
from importlib import import_module
from types import ModuleType
from typing import Any

from infrastructure.configuration import (
    load_config_file,
    load_settings,
    set_serve_endpoints,
)

from .endpoint import Endpoint, EndpointBuilder
from .utils import qualified_name

LOGGER = logging.getLogger("portico.cli")


@dataclass(slots=True)
class LoadedEndpoint:
    """Container for the resolved endpoint."""

    module: ModuleType
    endpoint: Endpoint
    module_name: str
    attr_name: str


def _parse_endpoint_path(path: str) -> tuple[str, str]:
    module_name, _, attr = path.partition(":")
    return module_name, attr or "endpoint"


def _load_endpoint(path: str) -> LoadedEndpoint:
    module_name, attr_name = _parse_endpoint_path(path)
    module = import_module(module_name)
    if not hasattr(module, attr_name):
        raise RuntimeError(f"Module '{module_name}' does not define '{attr_name}'")
    target = getattr(module, attr_name)
    if isinstance(target, EndpointBuilder):
        target = target.compile()
    if not isinstance(target, Endpoint):
        raise RuntimeError(
            f"'{module_name}:{attr_name}' is neither an Endpoint nor an EndpointBuilder"
        )
    return LoadedEndpoint(module, target, module_name, attr_name)


def _prepare(args: argparse.Namespace) -> None:
    settings = load_settings()
    config_file = getattr(args, "config", None) or settings.config_file
    if config_file:
        loaded = load_config_file(config_file)
        LOGGER.debug("loaded %d endpoint configurations from %s", len(loaded), config_file)


def _json_default(value: Any) -> Any:
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if callable(value):
        return qualified_name(value)
    return repr(value)


def _cmd_config(args: argparse.Namespace) -> None:
    loaded = _load_endpoint(args.endpoint)
    config = loaded.endpoint.runtime_config()
    if args.key:
        if args.key not in config:
            raise SystemExit(f"unknown configuration key: {args.key}")
        config = config[args.key]
    print(json.dumps(config, indent=2, sort_keys=True, default=_json_default))


def _cmd_sockets(args: argparse.Namespace) -> None:
    loaded = _load_endpoint(args.endpoint)
    for mount in loaded.endpoint.sockets():
        handler = mount.handler
        name = handler if isinstance(handler, str) else qualified_name(handler)
        print(f"{mount.path}\t{name}")


def _cmd_server(args: argparse.Namespace) -> None:
    set_serve_endpoints(True)
    try:
        loaded = _load_endpoint(args.endpoint)
    finally:
        set_serve_endpoints(None)
    endpoint = loaded.endpoint
    endpoint.start()
    print(
        f"Endpoint '{loaded.module_name}:{loaded.attr_name}' running at {endpoint.url()}"
    )
    if args.no_block:
        return
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        LOGGER.info("Server stopped.")
    finally:
        endpoint.stop()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="portico")
    parser.add_argument(
        "--config",
        help="TOML file loaded into the application environment (default: PORTICO_CONFIG)",
    )
    sub = parser.add_subparsers(dest="cmd")

    server = sub.add_parser("server", help="start an endpoint with server=true")
    server.add_argument(
        "--endpoint",
        required=True,
        help="Python path to the endpoint, e.g. 'my_app.web:endpoint'",
    )
    server.add_argument(
        "--no-block",
        action="store_true",
        help="Start the endpoint without blocking (useful for testing)",
    )
    server.set_defaults(func=_cmd_server)

    config = sub.add_parser("config", help="print the loaded configuration as JSON")
    config.add_argument("--endpoint", required=True)
    config.add_argument("key", nargs="?")
    config.set_defaults(func=_cmd_config)

    sockets = sub.add_parser("sockets", help="list socket mounts")
    sockets.add_argument("--endpoint", required=True)
    sockets.set_defaults(func=_cmd_sockets)

    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    _prepare(args)
    args.func(args)


if __name__ == "__main__":
    main(sys.argv[1:])
