from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from yarl import URL

from pyf1proxy._api.auth import TokenProvider
from pyf1proxy.exceptions import AuthenticationError, TransportError


class _FakeTransport:
    def __init__(self, *responses: dict[str, Any] | Exception) -> None:
        self._responses = list(responses)
        self.forms: list[Mapping[str, str]] = []

    async def get_json(self, url: str | URL, *, headers: Mapping[str, str] | None = None) -> Any:
        raise AssertionError("unexpected GET")

    async def post_form(self, url: str | URL, form: Mapping[str, str]) -> dict[str, Any]:
        self.forms.append(form)
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def get_json_with_cookies(
        self, url: str | URL, *, headers: Mapping[str, str] | None = None
    ) -> tuple[Any, str]:
        raise AssertionError("unexpected GET")


def _provider(transport: _FakeTransport, password: str | None = "secret") -> TokenProvider:
    return TokenProvider(transport, "https://api.example/token", "user@example.com", password)


@pytest.mark.asyncio
async def test_token_is_cached_until_close_to_expiry() -> None:
    transport = _FakeTransport(
        {"access_token": "first", "expires_in": "3600", "token_type": "bearer"},
        {"access_token": "second", "expires_in": 3600},
    )
    tokens = _provider(transport)

    assert await tokens.get_token() == "first"
    assert await tokens.get_token() == "first"
    assert transport.forms == [{"username": "user@example.com", "password": "secret"}]

    # Inside the renewal margin a new token is requested.
    later = datetime.now(UTC) + timedelta(seconds=3600 - 60)
    assert await tokens.get_token(now=later) == "second"
    assert len(transport.forms) == 2


@pytest.mark.asyncio
async def test_invalidate_forces_a_new_request() -> None:
    transport = _FakeTransport({"access_token": "first"}, {"access_token": "second"})
    tokens = _provider(transport)
    await tokens.get_token()
    tokens.invalidate()
    assert tokens.current is None
    assert await tokens.get_token() == "second"


@pytest.mark.asyncio
async def test_rejected_credentials_raise_authentication_error() -> None:
    transport = _FakeTransport(TransportError("HTTP 401", status_code=401))
    with pytest.raises(AuthenticationError) as excinfo:
        await _provider(transport).get_token()
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_server_errors_stay_transport_errors() -> None:
    transport = _FakeTransport(TransportError("HTTP 503", status_code=503))
    with pytest.raises(TransportError):
        await _provider(transport).get_token()


@pytest.mark.asyncio
async def test_missing_credentials_never_hit_the_network() -> None:
    transport = _FakeTransport()
    tokens = _provider(transport, password=None)
    assert not tokens.has_credentials
    with pytest.raises(AuthenticationError):
        await tokens.get_token()
    assert transport.forms == []


@pytest.mark.asyncio
async def test_blank_password_is_treated_as_missing() -> None:
    transport = _FakeTransport()
    with pytest.raises(AuthenticationError, match="required"):
        await _provider(transport, password="").get_token()
    assert transport.forms == []


@pytest.mark.asyncio
async def test_response_without_token_is_rejected() -> None:
    transport = _FakeTransport({"detail": "nope"})
    with pytest.raises(AuthenticationError, match="access_token"):
        await _provider(transport).get_token()
