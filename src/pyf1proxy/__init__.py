"""pyf1proxy - Aggregation-and-broadcast proxy for live F1 timing."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyf1proxy")
except PackageNotFoundError:
    __version__ = "0+local"
from pyf1proxy.config import ProxyConfig
from pyf1proxy.exceptions import (
    AdapterUnavailableError,
    AuthenticationError,
    ConfigError,
    F1ProxyError,
    MalformedPayloadError,
    ReplayDataError,
    SubscriberClosedError,
    TransportError,
)
from pyf1proxy.hub import BroadcastHub, Subscriber
from pyf1proxy.selector import ModeSelector
from pyf1proxy.server import create_app
from pyf1proxy.state.events import EventKind, SourceMode, StateEvent
from pyf1proxy.state.store import StateStore

__all__ = [
    "__version__",
    "AdapterUnavailableError",
    "AuthenticationError",
    "BroadcastHub",
    "ConfigError",
    "EventKind",
    "F1ProxyError",
    "MalformedPayloadError",
    "ModeSelector",
    "ProxyConfig",
    "ReplayDataError",
    "SourceMode",
    "StateEvent",
    "StateStore",
    "Subscriber",
    "SubscriberClosedError",
    "TransportError",
    "create_app",
]
