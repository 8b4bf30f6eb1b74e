"""Capability handle given to source adapters.

Adapters never see the raw document.  They read through the handle and
publish changes through their ``emit`` callback; the only mutation they may
perform directly is a clean-slate ``clear()``, and only while they are the
active source.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pyf1proxy.state.store import StateStore


class StateHandle:
    def __init__(self, store: StateStore, *, is_current: Callable[[], bool] | None = None) -> None:
        self._store = store
        self._is_current = is_current or (lambda: True)

    @property
    def has_state(self) -> bool:
        return self._store.has_state

    def get(self, key: str, default: Any = None) -> Any:
        return self._store.get(key, default)

    def snapshot(self) -> dict[str, Any]:
        return self._store.snapshot()

    def clear(self) -> bool:
        """Clear the document if this handle's adapter is still the active source."""
        if not self._is_current():
            return False
        self._store.clear()
        return True
