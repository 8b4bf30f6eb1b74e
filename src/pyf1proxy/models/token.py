"""OAuth access token model."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field


class AccessToken(BaseModel):
    """Token returned by the OAuth password grant.

    Parameters
    ----------
    access_token : str
        Bearer token used for the broker password and REST requests.
    expires_in : int
        Lifetime in seconds, as reported by the token endpoint.
    obtained_at : datetime
        When the token was received (UTC).
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str
    expires_in: int = 3600
    obtained_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def expires_at(self) -> datetime:
        return self.obtained_at + timedelta(seconds=self.expires_in)

    def is_fresh(self, *, margin: float, now: datetime | None = None) -> bool:
        """Whether the token is still usable *margin* seconds from now."""
        current = now or datetime.now(UTC)
        return current + timedelta(seconds=margin) < self.expires_at
