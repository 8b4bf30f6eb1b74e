"""OAuth password grant for the authenticated OpenF1 services.

Endpoint:
  - POST https://api.openf1.org/token (form fields ``username``, ``password``)

The access token is cached and renewed a few minutes before it expires.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

from pydantic import ValidationError

from pyf1proxy._constants import TOKEN_RENEW_MARGIN_SECONDS
from pyf1proxy._redact import redact_for_log
from pyf1proxy._transport import Transport
from pyf1proxy.exceptions import AuthenticationError, TransportError
from pyf1proxy.models.token import AccessToken

_logger = logging.getLogger(__name__)

# Token endpoint statuses that mean the credentials themselves were refused.
_REJECTED_STATUSES = frozenset({400, 401, 403})


class TokenProvider:
    """Cached OAuth access token.

    Parameters
    ----------
    transport : Transport
        Transport used for the token request.
    token_url : str
        OAuth token endpoint.
    username, password : str or None
        Account credentials.  Missing credentials raise
        :class:`AuthenticationError` on first use.
    renew_margin : float
        Seconds before expiry at which the token is renewed.
    """

    def __init__(
        self,
        transport: Transport,
        token_url: str,
        username: str | None,
        password: str | None,
        *,
        renew_margin: float = TOKEN_RENEW_MARGIN_SECONDS,
    ) -> None:
        self._transport = transport
        self._token_url = token_url
        self._username = username
        self._password = password
        self._renew_margin = renew_margin
        self._token: AccessToken | None = None
        self._lock = asyncio.Lock()

    @property
    def username(self) -> str | None:
        return self._username

    @property
    def has_credentials(self) -> bool:
        return bool(self._username and self._password)

    @property
    def current(self) -> AccessToken | None:
        return self._token

    def invalidate(self) -> None:
        """Drop the cached token so the next call requests a new one."""
        self._token = None

    async def get_token(self, *, now: datetime | None = None) -> str:
        """Return a valid access token, requesting one if needed.

        Raises
        ------
        AuthenticationError
            If credentials are missing or were rejected.
        TransportError
            If the token endpoint could not be reached.
        """
        async with self._lock:
            token = self._token
            if token is not None and token.is_fresh(margin=self._renew_margin, now=now):
                return token.access_token
            token = await self._request_token()
            self._token = token
            return token.access_token

    async def _request_token(self) -> AccessToken:
        username, password = self._username, self._password
        if not username or not password:
            raise AuthenticationError("OPENF1_USERNAME and OPENF1_PASSWORD are required")

        form = {"username": username, "password": password}
        _logger.debug("Requesting access token form=%s", redact_for_log(form))
        try:
            body = await self._transport.post_form(self._token_url, form)
        except TransportError as exc:
            if exc.status_code in _REJECTED_STATUSES:
                raise AuthenticationError(
                    f"Token request rejected: HTTP {exc.status_code}",
                    status_code=exc.status_code,
                ) from exc
            raise

        try:
            token = AccessToken.model_validate({**body, "obtained_at": datetime.now(UTC)})
        except ValidationError as exc:
            raise AuthenticationError(f"Token response missing access_token: {redact_for_log(body)}") from exc
        _logger.info("Access token obtained, expires in %ss", token.expires_in)
        return token
