"""Custom exception hierarchy for pyf1proxy."""

from __future__ import annotations


class F1ProxyError(Exception):
    """Base exception for all pyf1proxy errors."""


class ConfigError(F1ProxyError):
    """Invalid or missing configuration."""


class TransportError(F1ProxyError):
    """HTTP-level failure (network, non-200, invalid JSON).

    Raised for a single request.  Adapters treat it as "no new data this
    cycle" and keep running.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class MalformedPayloadError(F1ProxyError):
    """An upstream frame or message could not be parsed.

    Only the offending message is dropped; the connection stays up.
    """


class AuthenticationError(F1ProxyError):
    """Credentials are missing or were rejected by the token endpoint.

    The affected adapter reports itself unavailable for the rest of the
    process lifetime instead of retrying.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class AdapterUnavailableError(F1ProxyError):
    """A source adapter cannot run in this process (e.g. not configured)."""


class ReplayDataError(F1ProxyError):
    """Archival session data required by the replay simulator is missing.

    This is the only unrecoverable condition: the mode selector enters the
    terminal ``stopped`` state and the health endpoint reports it.
    """


class SubscriberClosedError(F1ProxyError):
    """A subscriber's stream is closed or too far behind to accept frames."""
