"""Normalized state events.

All source adapters convert their inputs into these events. Only the
state/store layer is allowed to merge them.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SourceMode(StrEnum):
    RELAY = "relay"
    SIGNALR = "signalr"
    MQTT = "mqtt"
    POLLING = "polling"
    REPLAY = "replay"
    STOPPED = "stopped"


class EventKind(StrEnum):
    INITIAL = "initial"
    UPDATE = "update"


class StateEvent(BaseModel):
    """A partial (or, for ``INITIAL``, full) state document to publish."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind = EventKind.UPDATE
    source: SourceMode
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = Field(default_factory=dict, description="Partial state document")

    @classmethod
    def update(cls, source: SourceMode, data: dict[str, Any]) -> StateEvent:
        return cls(kind=EventKind.UPDATE, source=source, data=data)

    @classmethod
    def initial(cls, source: SourceMode, data: dict[str, Any]) -> StateEvent:
        return cls(kind=EventKind.INITIAL, source=source, data=data)

    def with_data(self, data: dict[str, Any]) -> StateEvent:
        return self.model_copy(update={"data": data})
