"""In-memory unified state store.

This is the only component allowed to merge published state events.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

from pyf1proxy.state.events import EventKind, StateEvent

LIVE_FLAG_KEY = "isLive"


def _is_index_patch(patch: Mapping[str, Any]) -> bool:
    return bool(patch) and all(isinstance(key, str) and key.isdigit() for key in patch)


def _merge_index_patch(target: list[Any], patch: Mapping[str, Any]) -> None:
    """Apply an index-keyed mapping onto a list.

    The live timing feed ships list deltas as ``{"3": {...}}``.  Existing
    positions are merged; positions past the end extend the list, padding
    any gap with ``None`` so the index is kept.
    """
    for key in sorted(patch, key=int):
        index = int(key)
        value = patch[key]
        if index >= len(target):
            target.extend([None] * (index - len(target) + 1))
        existing = target[index]
        if isinstance(existing, dict) and isinstance(value, Mapping):
            deep_merge(existing, value)
        elif isinstance(value, Mapping):
            target[index] = deep_merge({}, value)
        else:
            target[index] = copy.deepcopy(value)


def deep_merge(target: dict[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge *patch* into *target* in place and return *target*.

    Mappings recurse field by field, every other type overwrites.  Keys the
    patch does not carry are never touched.
    """
    for key, value in patch.items():
        existing = target.get(key)
        if isinstance(value, Mapping):
            if isinstance(existing, dict):
                deep_merge(existing, value)
                continue
            if isinstance(existing, list) and _is_index_patch(value):
                _merge_index_patch(existing, value)
                continue
            target[key] = deep_merge({}, value)
            continue
        target[key] = copy.deepcopy(value)
    return target


class StateStore:
    """The unified state document.

    All mutating methods are synchronous so that, on the event loop, a merge
    and the broadcast that follows it can never interleave with a snapshot
    taken for a new subscriber.
    """

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    @property
    def has_state(self) -> bool:
        return bool(self._data)

    @property
    def is_live(self) -> bool:
        session_info = self._data.get("SessionInfo")
        return isinstance(session_info, dict) and session_info.get(LIVE_FLAG_KEY) is True

    def merge(self, partial: Mapping[str, Any]) -> None:
        """Deep-merge a partial update into the document."""
        if not partial:
            return
        deep_merge(self._data, partial)

    def apply(self, event: StateEvent) -> None:
        """Apply a published event.

        ``INITIAL`` events are full-state replacements: the document is
        cleared in place first.
        """
        if event.kind == EventKind.INITIAL:
            self.clear()
        self.merge(event.data)

    def clear(self) -> None:
        """Remove every key while keeping the same container."""
        self._data.clear()

    def snapshot(self) -> dict[str, Any]:
        """Point-in-time copy of the whole document."""
        return copy.deepcopy(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        """Copy of one top-level domain."""
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])
