"""Internal MQTT bootstrap, parsing, and runtime helpers."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from pyf1proxy.exceptions import MalformedPayloadError

# CONNACK reason codes for refused credentials (MQTT v5 / v3.1.1).
_AUTH_REFUSED_CODES = frozenset({4, 5, 134, 135})


@dataclass(frozen=True)
class MqttBootstrap:
    """Broker/session data required to connect to the OpenF1 broker."""

    broker_host: str
    broker_port: int
    topics: tuple[str, ...]
    client_id: str
    username: str
    password: str


@dataclass(frozen=True)
class MqttMessage:
    """Decoded broker message."""

    topic: str
    payload: dict[str, Any]

    @property
    def endpoint(self) -> str:
        """Topic without its version prefix (``v1/laps`` -> ``laps``)."""
        return self.topic.rsplit("/", 1)[-1]


def build_client_id(prefix: str = "pyf1proxy") -> str:
    return f"{prefix}-{secrets.token_hex(6)}"


def build_bootstrap(
    *,
    host: str,
    port: int,
    topics: Sequence[str],
    username: str,
    access_token: str,
) -> MqttBootstrap:
    """Connection details for one broker session; the access token is the password."""
    return MqttBootstrap(
        broker_host=host,
        broker_port=port,
        topics=tuple(topics),
        client_id=build_client_id(),
        username=username,
        password=access_token,
    )


def decode_mqtt_payload(payload: bytes) -> dict[str, Any]:
    """Parse MQTT payload bytes into a JSON object."""
    try:
        parsed = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedPayloadError(f"MQTT payload is not JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise MalformedPayloadError("MQTT payload is not a JSON object")
    return parsed


class F1MqttRuntime:
    """Threaded paho-mqtt runtime that emits parsed messages onto an asyncio loop.

    paho's network loop runs in its own thread; every callback is handed to
    the event loop with ``call_soon_threadsafe``.  Automatic reconnects are
    left to the caller, which needs a fresh access token for each attempt.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[MqttMessage], None],
        on_connect: Callable[[bool, bool], None] | None = None,
        on_disconnect: Callable[[str], None] | None = None,
        keepalive: int = 60,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_message = on_message
        self._on_connect = on_connect
        self._on_disconnect = on_disconnect
        self._keepalive = keepalive
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topics: tuple[str, ...] = ()

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def _post(self, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(callback, *args)

    def start(self, bootstrap: MqttBootstrap) -> None:
        """Connect and subscribe with provided broker details.

        Blocks for the TCP/TLS handshake; call it from an executor.
        """
        self.stop()
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s topics=%s client_id=%s",
            bootstrap.broker_host,
            bootstrap.broker_port,
            len(bootstrap.topics),
            bootstrap.client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=bootstrap.client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        client.username_pw_set(bootstrap.username, bootstrap.password)
        client.tls_set()

        self._topics = bootstrap.topics

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                self._post(self._on_connect, False, reason_code.value in _AUTH_REFUSED_CODES)
                return
            self._logger.debug("MQTT connected successfully reason=%s", reason_code)
            for topic in self._topics:
                self._logger.debug("MQTT subscribing topic=%s", topic)
                c.subscribe(topic, qos=0)
            self._post(self._on_connect, True, False)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                payload = decode_mqtt_payload(msg.payload)
            except MalformedPayloadError:
                self._logger.debug("MQTT payload parse failure topic=%s", msg.topic, exc_info=True)
                return
            self._post(self._on_message, MqttMessage(topic=msg.topic, payload=payload))

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)
                self._post(self._on_disconnect, str(reason_code))

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(bootstrap.broker_host, bootstrap.broker_port, keepalive=self._keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._topics = ()

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
