"""Upstream source adapters and their construction."""

from __future__ import annotations

from collections.abc import Callable

import aiohttp

from pyf1proxy._api.auth import TokenProvider
from pyf1proxy._api.openf1 import OpenF1Api
from pyf1proxy._transport import HttpTransport
from pyf1proxy.adapters.base import AdapterSignal, BaseAdapter, Emit, SignalCallback, SourceAdapter
from pyf1proxy.adapters.mqtt import MqttAdapter
from pyf1proxy.adapters.polling import PollingAdapter
from pyf1proxy.adapters.relay import RelayAdapter
from pyf1proxy.adapters.replay import ReplayAdapter
from pyf1proxy.adapters.signalr import SignalRAdapter
from pyf1proxy.config import ProxyConfig
from pyf1proxy.exceptions import AdapterUnavailableError
from pyf1proxy.state.events import SourceMode

AdapterFactory = Callable[[SourceMode, SignalCallback], SourceAdapter]


def build_adapter(
    mode: SourceMode,
    *,
    config: ProxyConfig,
    http_session: aiohttp.ClientSession,
    on_signal: SignalCallback,
) -> SourceAdapter:
    """Create a fresh adapter instance for *mode*."""
    transport = HttpTransport(http_session)
    api = OpenF1Api(transport, config.openf1_api_base)
    if mode == SourceMode.RELAY:
        return RelayAdapter(config, http_session, on_signal=on_signal)
    if mode == SourceMode.SIGNALR:
        return SignalRAdapter(config, http_session, transport=transport, on_signal=on_signal)
    if mode == SourceMode.MQTT:
        tokens = TokenProvider(transport, config.openf1_token_url, config.openf1_username, config.openf1_password)
        return MqttAdapter(config, api, tokens, on_signal=on_signal)
    if mode == SourceMode.POLLING:
        return PollingAdapter(config, api, on_signal=on_signal)
    if mode == SourceMode.REPLAY:
        return ReplayAdapter(config, api, on_signal=on_signal)
    raise AdapterUnavailableError(f"No adapter for mode {mode}")


__all__ = [
    "AdapterFactory",
    "AdapterSignal",
    "BaseAdapter",
    "Emit",
    "MqttAdapter",
    "PollingAdapter",
    "RelayAdapter",
    "ReplayAdapter",
    "SignalRAdapter",
    "SignalCallback",
    "SourceAdapter",
    "build_adapter",
]
