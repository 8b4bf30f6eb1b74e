"""Base model for OpenF1 records.

Every record model inherits from :class:`OpenF1Model` which provides:

* ``extra="ignore"`` so new upstream fields never break parsing.
* A ``model_validator(mode="before")`` that strips placeholder values
  (``None``, ``""``, NaN) so the field default is used.
* ``driver`` as the racing number string used as the state key.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator

# Placeholder strings OpenF1 uses for "not available".
_SENTINELS = frozenset({"", "NaN", "nan", "None"})


class OpenF1Model(BaseModel):
    """Base for OpenF1 REST and MQTT records."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @property
    def driver(self) -> str | None:
        number = getattr(self, "driver_number", None)
        return None if number is None else str(number)
