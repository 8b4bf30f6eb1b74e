"""Proxy configuration for pyf1proxy."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pyf1proxy.exceptions import ConfigError
from pyf1proxy.state.events import SourceMode


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, cast: type[int] | type[float]) -> int | float:
    try:
        return cast(value)
    except ValueError as exc:
        raise ConfigError(f"{env_key} must be a number, got {value!r}") from exc


def parse_mode(value: str | SourceMode | None) -> SourceMode | None:
    """Parse an explicit mode override.

    ``None``, ``""`` and ``"auto"`` mean automatic selection.
    """
    if value is None or isinstance(value, SourceMode):
        return value
    normalized = value.strip().lower()
    if normalized in {"", "auto"}:
        return None
    try:
        mode = SourceMode(normalized)
    except ValueError as exc:
        allowed = ", ".join(m.value for m in SourceMode if m != SourceMode.STOPPED)
        raise ConfigError(f"Unknown mode {value!r} (expected auto, {allowed})") from exc
    if mode == SourceMode.STOPPED:
        raise ConfigError("'stopped' cannot be forced")
    return mode


@dataclasses.dataclass(frozen=True)
class ProxyConfig:
    """Proxy configuration.

    Parameters
    ----------
    host : str
        Interface the HTTP boundary binds to.
    port : int
        Port the HTTP boundary listens on.
    mode : SourceMode or None
        Explicit adapter override.  ``None`` walks the automatic chain.
    relay_host : str or None
        Host of the already-aggregated upstream event stream.  The relay
        adapter is unavailable when unset.
    relay_path : str
        Request path of the upstream event stream.
    relay_secure : bool
        Use HTTPS for the upstream event stream.
    relay_reconnect_delay : float
        Base delay (seconds) of the relay's linear reconnect backoff.
    relay_max_reconnect_attempts : int
        Reconnect attempts before the relay gives up.
    signalr_host : str
        Host of the native live timing service.
    signalr_secure : bool
        Use HTTPS/WSS for the native live timing service.
    signalr_reconnect_delay : float
        Fixed delay (seconds) before the native client reconnects.
    signalr_max_reconnect_attempts : int
        Consecutive failed reconnects before the native client gives up.
    openf1_username : str or None
        Account used for the OAuth password grant of the pub/sub client.
    openf1_password : str or None
        Password for ``openf1_username``.
    openf1_api_base : str
        Base URL of the REST API (polling, backfill, replay).
    openf1_token_url : str
        OAuth token endpoint.
    mqtt_host : str
        Pub/sub broker host.
    mqtt_port : int
        Pub/sub broker TLS port.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_reconnect_delay : float
        Fixed delay (seconds) before the pub/sub client reconnects.
    mqtt_max_reconnect_attempts : int
        Consecutive failed reconnects before the pub/sub client gives up.
    poll_interval : float
        Seconds between REST poller cycles.
    poll_overlap : float
        Look-back (seconds) of each poll window, to catch delayed records.
    replay_session_key : int
        Archival session replayed when no live source is available.
    replay_circuit_key : int
        Circuit key reported in the replayed session info.
    replay_total_laps : int
        Scheduled race distance of the replayed session.
    replay_speed : float
        Virtual clock multiplier (1.0 is real time).
    replay_tick_interval : float
        Seconds between replay ticks.
    replay_formation_skip : float
        Seconds skipped after the first position report (formation period).
    replay_session_duration : float
        Session time limit (seconds) the countdown clock runs down from.
    keepalive_interval : float
        Seconds between comment-only keepalive frames on subscriber streams.
    subscriber_queue_size : int
        Frames buffered per subscriber before a stalled client is dropped.
    """

    host: str = "0.0.0.0"
    port: int = 4000
    mode: SourceMode | None = None
    relay_host: str | None = None
    relay_path: str = "/api/sse"
    relay_secure: bool = True
    relay_reconnect_delay: float = 5.0
    relay_max_reconnect_attempts: int = 10
    signalr_host: str = "livetiming.formula1.com"
    signalr_secure: bool = True
    signalr_reconnect_delay: float = 5.0
    signalr_max_reconnect_attempts: int = 10
    openf1_username: str | None = None
    openf1_password: str | None = None
    openf1_api_base: str = "https://api.openf1.org/v1"
    openf1_token_url: str = "https://api.openf1.org/token"
    mqtt_host: str = "mqtt.openf1.org"
    mqtt_port: int = 8883
    mqtt_keepalive: int = 60
    mqtt_reconnect_delay: float = 5.0
    mqtt_max_reconnect_attempts: int = 10
    poll_interval: float = 2.0
    poll_overlap: float = 3.0
    replay_session_key: int = 9598
    replay_circuit_key: int = 144
    replay_total_laps: int = 51
    replay_speed: float = 1.0
    replay_tick_interval: float = 1.0
    replay_formation_skip: float = 55 * 60
    replay_session_duration: float = 2 * 3600
    keepalive_interval: float = 15.0
    subscriber_queue_size: int = 1000

    def __post_init__(self) -> None:
        if self.replay_speed <= 0:
            raise ConfigError("replay_speed must be positive")
        if self.poll_interval <= 0 or self.replay_tick_interval <= 0 or self.keepalive_interval <= 0:
            raise ConfigError("intervals must be positive")

    @property
    def has_relay(self) -> bool:
        """Whether the primary relay has an upstream to connect to."""
        return bool(self.relay_host)

    @property
    def has_openf1_credentials(self) -> bool:
        """Whether the pub/sub client can request an access token."""
        return bool(self.openf1_username and self.openf1_password)

    @property
    def relay_url(self) -> str | None:
        if not self.relay_host:
            return None
        scheme = "https" if self.relay_secure else "http"
        return f"{scheme}://{self.relay_host}{self.relay_path}"

    @classmethod
    def from_env(cls, **overrides: Any) -> ProxyConfig:
        """Create configuration from environment variables.

        Explicit keyword arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        ProxyConfig
            Populated configuration.

        Raises
        ------
        ConfigError
            If a numeric variable or the mode override cannot be parsed.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "HOST": "host",
            "F1_SSE_HOST": "relay_host",
            "F1_SSE_PATH": "relay_path",
            "OPENF1_USERNAME": "openf1_username",
            "OPENF1_PASSWORD": "openf1_password",
            "OPENF1_API_BASE": "openf1_api_base",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val:
                config_kwargs[field_name] = val

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type[int] | type[float]]] = {
            "PORT": ("port", int),
            "REPLAY_SESSION_KEY": ("replay_session_key", int),
            "REPLAY_SPEED": ("replay_speed", float),
            "POLL_INTERVAL": ("poll_interval", float),
            "KEEPALIVE_INTERVAL": ("keepalive_interval", float),
        }
        for env_key, (field_name, cast) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, cast)

        if "relay_secure" not in overrides:
            config_kwargs["relay_secure"] = _env_bool(env.get("F1_SSE_SECURE"), True)

        if "mode" not in overrides:
            config_kwargs["mode"] = parse_mode(env.get("F1_PROXY_MODE"))
        else:
            overrides["mode"] = parse_mode(overrides["mode"])

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
