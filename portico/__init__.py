"""Endpoint composition and configuration for Python web applications."""

__version__ = "0.1.0"

from .channel import Broadcast
from .config import ConfigStore
from .conn import Conn
from .endpoint import Endpoint, EndpointBuilder
from .exceptions import (
    AlreadySentError,
    BroadcastError,
    ConfigError,
    PipelineError,
    PorticoError,
)
from .http import Request, Response
from .instrument import Instrumentation, instrument
from .instrumenters import LatencyInstrumenter, TracingInstrumenter
from .pipeline import PipelineBuilder, PipelineStep, Plug, compile_pipeline
from .plugs import Debugger, ForceSSL, RenderErrors
from .pubsub import LocalPubSub
from .sockets import Socket, SocketMount
from .testclient import Response as TestResponse
from .testclient import TestClient

__all__ = [
    "__version__",
    "AlreadySentError",
    "Broadcast",
    "BroadcastError",
    "ConfigError",
    "ConfigStore",
    "Conn",
    "Debugger",
    "Endpoint",
    "EndpointBuilder",
    "ForceSSL",
    "Instrumentation",
    "LatencyInstrumenter",
    "LocalPubSub",
    "PipelineBuilder",
    "PipelineError",
    "PipelineStep",
    "Plug",
    "PorticoError",
    "RenderErrors",
    "Request",
    "Response",
    "Socket",
    "SocketMount",
    "TestClient",
    "TestResponse",
    "TracingInstrumenter",
    "compile_pipeline",
    "instrument",
]
