from __future__ import annotations

import pytest

from pyf1proxy.config import ProxyConfig, parse_mode
from pyf1proxy.exceptions import ConfigError
from pyf1proxy.state.events import SourceMode

_ENV_KEYS = (
    "HOST",
    "PORT",
    "F1_SSE_HOST",
    "F1_SSE_PATH",
    "F1_SSE_SECURE",
    "F1_PROXY_MODE",
    "OPENF1_USERNAME",
    "OPENF1_PASSWORD",
    "OPENF1_API_BASE",
    "REPLAY_SESSION_KEY",
    "REPLAY_SPEED",
    "POLL_INTERVAL",
    "KEEPALIVE_INTERVAL",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_defaults_without_environment(clean_env: pytest.MonkeyPatch) -> None:
    config = ProxyConfig.from_env()
    assert config.port == 4000
    assert config.mode is None
    assert config.relay_url is None
    assert not config.has_relay
    assert not config.has_openf1_credentials
    assert config.replay_session_key == 9598


def test_environment_values(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("PORT", "8080")
    clean_env.setenv("F1_SSE_HOST", "relay.example")
    clean_env.setenv("F1_SSE_SECURE", "false")
    clean_env.setenv("F1_PROXY_MODE", "Replay")
    clean_env.setenv("OPENF1_USERNAME", "user")
    clean_env.setenv("OPENF1_PASSWORD", "secret")
    clean_env.setenv("REPLAY_SPEED", "4")

    config = ProxyConfig.from_env()

    assert config.port == 8080
    assert config.relay_url == "http://relay.example/api/sse"
    assert config.mode == SourceMode.REPLAY
    assert config.has_openf1_credentials
    assert config.replay_speed == 4.0


def test_overrides_win_over_environment(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("PORT", "8080")
    clean_env.setenv("F1_PROXY_MODE", "mqtt")
    config = ProxyConfig.from_env(port=9000, mode="auto")
    assert config.port == 9000
    assert config.mode is None


def test_bad_number_is_a_config_error(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("PORT", "eighty")
    with pytest.raises(ConfigError, match="PORT"):
        ProxyConfig.from_env()


def test_parse_mode() -> None:
    assert parse_mode(None) is None
    assert parse_mode(" auto ") is None
    assert parse_mode("") is None
    assert parse_mode("SIGNALR") == SourceMode.SIGNALR
    assert parse_mode(SourceMode.POLLING) == SourceMode.POLLING
    with pytest.raises(ConfigError, match="Unknown mode"):
        parse_mode("telepathy")
    with pytest.raises(ConfigError):
        parse_mode("stopped")


def test_invalid_rates_are_rejected() -> None:
    with pytest.raises(ConfigError):
        ProxyConfig(replay_speed=0)
    with pytest.raises(ConfigError):
        ProxyConfig(poll_interval=-1)
