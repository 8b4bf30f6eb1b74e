"""Authenticated pub/sub client (OpenF1 MQTT broker).

Each broker message is one OpenF1 record.  Timing-line disciplines update the
per-driver scratch in a :class:`TimingBook`, which derives only the fields of
that discipline.  Right after the first successful connect of a run, the
session's race control messages, team radio captures and driver roster are
backfilled over REST, deduplicated against what the broker already sent.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from pyf1proxy._api.auth import TokenProvider
from pyf1proxy._api.openf1 import OpenF1Api
from pyf1proxy._constants import MQTT_TOPICS
from pyf1proxy._mqtt import F1MqttRuntime, MqttMessage, build_bootstrap
from pyf1proxy.adapters.base import AdapterSignal, BaseAdapter, SignalCallback
from pyf1proxy.config import ProxyConfig
from pyf1proxy.exceptions import AuthenticationError, TransportError
from pyf1proxy.ingestion.messages import ALL_CLEAR, race_control_partial, team_radio_partial
from pyf1proxy.ingestion.openf1 import driver_entry, driver_list, location_partial, session_info, weather_partial
from pyf1proxy.ingestion.timing import TimingBook
from pyf1proxy.models._base import OpenF1Model
from pyf1proxy.models.openf1 import (
    CarData,
    Driver,
    Interval,
    Lap,
    Location,
    Position,
    RaceControl,
    Session,
    Stint,
    TeamRadio,
    Weather,
)
from pyf1proxy.state.events import SourceMode

RuntimeFactory = Callable[..., F1MqttRuntime]

_TOPIC_MODELS: dict[str, type[OpenF1Model]] = {
    "sessions": Session,
    "drivers": Driver,
    "position": Position,
    "intervals": Interval,
    "laps": Lap,
    "location": Location,
    "car_data": CarData,
    "race_control": RaceControl,
    "team_radio": TeamRadio,
    "weather": Weather,
    "stints": Stint,
}


class MqttAdapter(BaseAdapter):
    mode = SourceMode.MQTT

    def __init__(
        self,
        config: ProxyConfig,
        api: OpenF1Api,
        tokens: TokenProvider,
        *,
        runtime_factory: RuntimeFactory | None = None,
        on_signal: SignalCallback | None = None,
    ) -> None:
        super().__init__(config, on_signal=on_signal)
        self._tokens = tokens
        self._api = api.with_tokens(tokens)
        self._runtime_factory = runtime_factory or F1MqttRuntime
        self._runtime: F1MqttRuntime | None = None
        self._retired: list[F1MqttRuntime] = []
        self._book = TimingBook()
        self._attempts = 0
        self._rejected = False
        self._backfilled = False
        self._session_key: int | None = None

    @property
    def is_available(self) -> bool:
        return self._tokens.has_credentials and not self._rejected

    @property
    def session_key(self) -> int | None:
        return self._session_key

    async def _open(self) -> bool:
        self._book = TimingBook()
        self._attempts = 0
        self._backfilled = False
        self._session_key = None
        return await self._connect()

    async def _close(self) -> None:
        if self._runtime is not None:
            self._retire(self._runtime)
        while self._retired:
            await self._stop_runtime(self._retired[0])

    def _retire(self, runtime: F1MqttRuntime) -> None:
        """Detach *runtime*; its callbacks are ignored from here on."""
        if self._runtime is runtime:
            self._runtime = None
        if runtime not in self._retired:
            self._retired.append(runtime)

    async def _stop_runtime(self, runtime: F1MqttRuntime) -> None:
        try:
            await asyncio.get_running_loop().run_in_executor(None, runtime.stop)
        finally:
            if runtime in self._retired:
                self._retired.remove(runtime)

    async def _connect(self) -> bool:
        try:
            token = await self._tokens.get_token()
        except AuthenticationError as exc:
            self._logger.warning("OpenF1 credentials rejected: %s", exc)
            self._rejected = True
            return False
        except TransportError as exc:
            self._logger.warning("OpenF1 token request failed: %s", exc)
            return False

        username = self._tokens.username or ""
        bootstrap = build_bootstrap(
            host=self._config.mqtt_host,
            port=self._config.mqtt_port,
            topics=MQTT_TOPICS,
            username=username,
            access_token=token,
        )
        runtime = self._runtime_factory(
            loop=asyncio.get_running_loop(),
            on_message=self.handle_message,
            on_connect=lambda ok, auth_refused: self._on_connect(runtime, ok, auth_refused),
            on_disconnect=lambda reason: self._on_disconnect(runtime, reason),
            keepalive=self._config.mqtt_keepalive,
            logger=self._logger,
        )
        # Tracked before starting so callbacks racing the handshake are recognised.
        self._runtime = runtime
        self._logger.info("Connecting to %s:%s", self._config.mqtt_host, self._config.mqtt_port)
        try:
            await asyncio.get_running_loop().run_in_executor(None, runtime.start, bootstrap)
        except OSError as exc:
            self._logger.warning("Broker connection failed: %s", exc)
            self._retire(runtime)
            await self._stop_runtime(runtime)
            return False
        if not self._running:
            self._retire(runtime)
            await self._stop_runtime(runtime)
            return False
        return True

    def _on_connect(self, runtime: F1MqttRuntime, ok: bool, auth_refused: bool) -> None:
        if not self._running or runtime is not self._runtime:
            return
        if not ok:
            if auth_refused:
                self._rejected = True
                self._tokens.invalidate()
                self._retire(runtime)
                self._scheduler.spawn(lambda: self._stop_runtime(runtime), name="mqtt-retire")
                self._signal(AdapterSignal.UNAVAILABLE)
            # Any other refusal is followed by a disconnect callback for the same runtime.
            return
        self._logger.info("Connected to OpenF1 broker")
        self._attempts = 0
        if not self._backfilled:
            self._backfilled = True
            self._scheduler.spawn(self.backfill, name="mqtt-backfill")

    def _on_disconnect(self, runtime: F1MqttRuntime, reason: str) -> None:
        if not self._running or runtime is not self._runtime:
            return
        self._logger.info("Broker connection closed: %s", reason)
        # Tokens may have expired while connected.
        self._tokens.invalidate()
        self._retire(runtime)
        self._scheduler.spawn(lambda: self._handle_disconnect(runtime), name="mqtt-disconnect")

    async def _handle_disconnect(self, runtime: F1MqttRuntime) -> None:
        await self._stop_runtime(runtime)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if not self._running:
            return
        if self._attempts >= self._config.mqtt_max_reconnect_attempts:
            self._logger.warning("Broker reconnect attempts exhausted")
            self._signal(AdapterSignal.EXHAUSTED)
            return
        self._attempts += 1
        self._logger.info("Reconnecting to broker in %.1fs", self._config.mqtt_reconnect_delay)
        self._scheduler.once(self._config.mqtt_reconnect_delay, self._reconnect, name="mqtt-reconnect")

    async def _reconnect(self) -> None:
        if not self._running:
            return
        if await self._connect():
            return
        if self._rejected:
            self._signal(AdapterSignal.UNAVAILABLE)
            return
        self._schedule_reconnect()

    async def backfill(self) -> None:
        """Load what happened in the current session before the broker connected."""
        session = await self._api.latest_session()
        if session is None or not self._running:
            self._logger.info("No current session, skipping backfill")
            return
        self._session_key = session.session_key
        self._logger.info("Backfilling session %s (%s)", session.session_key, session.display_name)
        race_control, team_radio, drivers = await asyncio.gather(
            self._api.race_control(session.session_key),
            self._api.team_radio(session.session_key),
            self._api.drivers(session.session_key),
        )
        if not self._running:
            return
        self._logger.info(
            "Loaded %d race control messages, %d team radios, %d drivers",
            len(race_control),
            len(team_radio),
            len(drivers),
        )
        partial = session_info(session)
        partial.update(driver_list(drivers))
        if not self.state.get("TrackStatus"):
            partial["TrackStatus"] = dict(ALL_CLEAR)
        self._publish(partial)
        self._publish(race_control_partial(self.state.get("RaceControlMessages"), race_control))
        self._publish(team_radio_partial(self.state.get("TeamRadio"), team_radio, drivers=self.state.get("DriverList")))

    def handle_message(self, message: MqttMessage) -> None:
        """Apply one broker message (runs on the event loop)."""
        if not self._running:
            return
        model = _TOPIC_MODELS.get(message.endpoint)
        if model is None:
            self._logger.debug("Ignoring message on %s", message.topic)
            return
        try:
            record = model.model_validate(message.payload)
        except ValidationError:
            self._logger.debug("Dropping malformed %s message", message.endpoint, exc_info=True)
            return
        self._publish(self._partial_for(record))

    def _partial_for(self, record: OpenF1Model) -> dict[str, Any]:
        if isinstance(record, Position):
            return self._book.apply_position(record)
        if isinstance(record, Interval):
            return self._book.apply_interval(record)
        if isinstance(record, Lap):
            return self._book.apply_lap(record)
        if isinstance(record, Stint):
            return self._book.apply_stint(record)
        if isinstance(record, CarData):
            return self._book.apply_car_data(record)
        if isinstance(record, Location):
            return location_partial([record])
        if isinstance(record, RaceControl):
            return race_control_partial(self.state.get("RaceControlMessages"), [record])
        if isinstance(record, TeamRadio):
            return team_radio_partial(self.state.get("TeamRadio"), [record], drivers=self.state.get("DriverList"))
        if isinstance(record, Weather):
            return weather_partial(record)
        if isinstance(record, Driver):
            return {"DriverList": {str(record.driver_number): driver_entry(record)}}
        if isinstance(record, Session):
            self._session_key = record.session_key
            return session_info(record)
        return {}
