"""Source adapter interface.

Every upstream source implements :class:`SourceAdapter`.  Adapters publish
normalized partial updates through the ``emit`` callback handed to
:meth:`SourceAdapter.start` and read the shared document through a
:class:`~pyf1proxy.state.handle.StateHandle`.  Conditions the mode selector
must act on are reported through the ``on_signal`` callback.
"""

from __future__ import annotations

import abc
import logging
from collections.abc import Callable
from enum import StrEnum
from typing import Any, ClassVar, Protocol

from pyf1proxy._scheduler import Scheduler
from pyf1proxy.config import ProxyConfig
from pyf1proxy.exceptions import F1ProxyError
from pyf1proxy.state.events import SourceMode, StateEvent
from pyf1proxy.state.handle import StateHandle

_logger = logging.getLogger(__name__)

Emit = Callable[[StateEvent], None]


class AdapterSignal(StrEnum):
    EXHAUSTED = "exhausted"
    """Reconnect attempts used up."""
    NO_SESSION = "no_session"
    """Upstream reachable but no live session is running."""
    UNAVAILABLE = "unavailable"
    """Credentials rejected; the adapter cannot run in this process."""


SignalCallback = Callable[["SourceAdapter", AdapterSignal], None]


class SourceAdapter(Protocol):
    """Structural adapter interface used by the mode selector."""

    @property
    def mode(self) -> SourceMode: ...

    @property
    def is_available(self) -> bool: ...

    @property
    def is_running(self) -> bool: ...

    async def start(self, emit: Emit, state: StateHandle) -> bool: ...

    async def stop(self) -> None: ...


class BaseAdapter(abc.ABC):
    """Shared lifecycle for the concrete adapters.

    Subclasses implement :meth:`_open` (connect; return ``False`` when the
    source cannot be used) and :meth:`_close` (release sockets).  Timers go
    through ``self._scheduler`` so :meth:`stop` can cancel them, including an
    invocation that is already in flight.
    """

    mode: ClassVar[SourceMode]

    def __init__(self, config: ProxyConfig, *, on_signal: SignalCallback | None = None) -> None:
        self._config = config
        self._on_signal = on_signal
        self._emit: Emit | None = None
        self._state: StateHandle | None = None
        self._running = False
        self._logger = logging.getLogger(type(self).__module__)
        self._scheduler = Scheduler(logger=self._logger)

    @property
    def is_available(self) -> bool:
        return True

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def state(self) -> StateHandle:
        if self._state is None:
            raise RuntimeError(f"{type(self).__name__} has not been started")
        return self._state

    async def start(self, emit: Emit, state: StateHandle) -> bool:
        if self._running:
            return True
        if not self.is_available:
            self._logger.info("%s source unavailable, not starting", self.mode)
            return False
        self._emit = emit
        self._state = state
        self._running = True
        try:
            opened = await self._open()
        except F1ProxyError as exc:
            self._logger.warning("%s source failed to start: %s", self.mode, exc)
            opened = False
        if not opened:
            await self.stop()
            return False
        return True

    async def stop(self) -> None:
        was_running = self._running
        self._running = False
        await self._scheduler.cancel_all()
        await self._close()
        self._emit = None
        if was_running:
            self._logger.info("%s source stopped", self.mode)

    @abc.abstractmethod
    async def _open(self) -> bool: ...

    async def _close(self) -> None:
        return None

    def _publish(self, data: dict[str, Any], *, initial: bool = False) -> None:
        """Emit a partial (or, with *initial*, a full-state) update.

        Results that arrive after :meth:`stop` are ignored.
        """
        if not self._running or self._emit is None:
            return
        if not data and not initial:
            return
        event = StateEvent.initial(self.mode, data) if initial else StateEvent.update(self.mode, data)
        self._emit(event)

    def _signal(self, signal: AdapterSignal) -> None:
        if not self._running:
            return
        self._logger.info("%s source signalled %s", self.mode, signal)
        if self._on_signal is not None:
            self._on_signal(self, signal)
