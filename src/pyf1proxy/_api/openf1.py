"""OpenF1 REST endpoints.

Endpoints (under ``https://api.openf1.org/v1``):
  - /sessions, /drivers
  - /position, /intervals, /laps, /location, /car_data
  - /race_control, /team_radio, /weather, /stints

Filters use the API's operator syntax (``date>=...``), which must reach the
server unescaped, so request URLs are built pre-encoded.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any, TypeVar
from urllib.parse import quote

from pydantic import ValidationError
from yarl import URL

from pyf1proxy._api.auth import TokenProvider
from pyf1proxy._transport import Transport
from pyf1proxy.exceptions import TransportError
from pyf1proxy.ingestion.normalize import to_iso
from pyf1proxy.models._base import OpenF1Model
from pyf1proxy.models.openf1 import (
    Driver,
    Interval,
    Lap,
    Location,
    Position,
    RaceControl,
    Session,
    Stint,
    TeamRadio,
)

_logger = logging.getLogger(__name__)

M = TypeVar("M", bound=OpenF1Model)

Filter = tuple[str, str, Any]
"""``(field, operator, value)``, e.g. ``("date", ">=", since)``."""


def _format_value(value: Any) -> str:
    if isinstance(value, datetime):
        value = to_iso(value)
    return quote(str(value), safe=":-.")


def build_url(base: str, endpoint: str, filters: Sequence[Filter] = ()) -> URL:
    query = "&".join(f"{name}{op}{_format_value(value)}" for name, op, value in filters)
    text = f"{base.rstrip('/')}/{endpoint}"
    if query:
        text = f"{text}?{query}"
    return URL(text, encoded=True)


def window(field: str, since: datetime | None, until: datetime | None = None) -> list[Filter]:
    """Filters for a half-open time window ``[since, until)``."""
    filters: list[Filter] = []
    if since is not None:
        filters.append((field, ">=", since))
    if until is not None:
        filters.append((field, "<", until))
    return filters


class OpenF1Api:
    """Typed access to the OpenF1 REST API.

    A failed request is a transient condition: it is logged and yields an
    empty result ("no new data this cycle").  Records that fail validation
    are dropped individually.

    Parameters
    ----------
    transport : Transport
        JSON transport.
    base_url : str
        API root, e.g. ``https://api.openf1.org/v1``.
    tokens : TokenProvider, optional
        When given, requests carry a bearer token.
    """

    def __init__(self, transport: Transport, base_url: str, *, tokens: TokenProvider | None = None) -> None:
        self._transport = transport
        self._base_url = base_url
        self._tokens = tokens

    def with_tokens(self, tokens: TokenProvider) -> OpenF1Api:
        return OpenF1Api(self._transport, self._base_url, tokens=tokens)

    async def _headers(self) -> dict[str, str]:
        headers = {"accept": "application/json"}
        if self._tokens is not None:
            headers["Authorization"] = f"Bearer {await self._tokens.get_token()}"
        return headers

    async def fetch(self, endpoint: str, model: type[M], filters: Sequence[Filter] = ()) -> list[M]:
        url = build_url(self._base_url, endpoint, filters)
        try:
            body = await self._transport.get_json(url, headers=await self._headers())
        except TransportError as exc:
            _logger.warning("OpenF1 %s request failed: %s", endpoint, exc)
            return []
        if not isinstance(body, list):
            _logger.debug("OpenF1 %s returned a non-list body: %r", endpoint, body)
            return []
        records: list[M] = []
        for item in body:
            try:
                records.append(model.model_validate(item))
            except ValidationError:
                _logger.debug("Dropping malformed %s record: %r", endpoint, item, exc_info=True)
        return records

    async def latest_session(self) -> Session | None:
        sessions = await self.fetch("sessions", Session, [("session_key", "=", "latest")])
        return sessions[0] if sessions else None

    async def session(self, session_key: int) -> Session | None:
        sessions = await self.fetch("sessions", Session, [("session_key", "=", session_key)])
        return sessions[0] if sessions else None

    async def drivers(self, session_key: int) -> list[Driver]:
        return await self.fetch("drivers", Driver, [("session_key", "=", session_key)])

    async def positions(
        self,
        session_key: int,
        since: datetime | None = None,
        until: datetime | None = None,
        *,
        extra: Sequence[Filter] = (),
    ) -> list[Position]:
        filters = [("session_key", "=", session_key), *window("date", since, until), *extra]
        return await self.fetch("position", Position, filters)

    async def intervals(
        self, session_key: int, since: datetime | None = None, until: datetime | None = None
    ) -> list[Interval]:
        filters = [("session_key", "=", session_key), *window("date", since, until)]
        return await self.fetch("intervals", Interval, filters)

    async def laps(self, session_key: int, since: datetime | None = None, until: datetime | None = None) -> list[Lap]:
        filters = [("session_key", "=", session_key), *window("date_start", since, until)]
        return await self.fetch("laps", Lap, filters)

    async def locations(
        self, session_key: int, since: datetime | None = None, until: datetime | None = None
    ) -> list[Location]:
        filters = [("session_key", "=", session_key), *window("date", since, until)]
        return await self.fetch("location", Location, filters)

    async def race_control(
        self, session_key: int, since: datetime | None = None, until: datetime | None = None
    ) -> list[RaceControl]:
        filters = [("session_key", "=", session_key), *window("date", since, until)]
        return await self.fetch("race_control", RaceControl, filters)

    async def team_radio(
        self, session_key: int, since: datetime | None = None, until: datetime | None = None
    ) -> list[TeamRadio]:
        filters = [("session_key", "=", session_key), *window("date", since, until)]
        return await self.fetch("team_radio", TeamRadio, filters)

    async def stints(self, session_key: int) -> list[Stint]:
        return await self.fetch("stints", Stint, [("session_key", "=", session_key)])
