"""HTTP transport: JSON requests and cookie capture on top of aiohttp."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from http.cookies import SimpleCookie
from typing import Any, Protocol

import aiohttp
from yarl import URL

from pyf1proxy._redact import redact_url
from pyf1proxy.exceptions import TransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the API wrappers and adapters.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`HttpTransport`) concrete.
    """

    async def get_json(self, url: str | URL, *, headers: Mapping[str, str] | None = None) -> Any: ...

    async def post_form(self, url: str | URL, form: Mapping[str, str]) -> dict[str, Any]: ...

    async def get_json_with_cookies(
        self,
        url: str | URL,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> tuple[Any, str]: ...


def cookie_header_from(headers: Any) -> str:
    """Build a ``Cookie`` header value from a response's ``Set-Cookie`` headers."""
    cookies: dict[str, str] = {}
    for raw in headers.getall("Set-Cookie", []):
        cookie: SimpleCookie = SimpleCookie()
        cookie.load(raw)
        for key, morsel in cookie.items():
            cookies[key] = morsel.value
    return "; ".join(f"{k}={v}" for k, v in cookies.items())


def _decode_json(text: str, endpoint: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise TransportError(f"Invalid JSON from {endpoint}: {text[:200]}", endpoint=endpoint) from exc


class HttpTransport:
    """aiohttp-backed transport.

    Every method raises :class:`TransportError` for network failures,
    non-2xx statuses and invalid JSON, so callers handle exactly one type.
    """

    def __init__(self, http_session: aiohttp.ClientSession) -> None:
        self._http = http_session

    @property
    def session(self) -> aiohttp.ClientSession:
        return self._http

    async def _request(
        self,
        method: str,
        url: str | URL,
        *,
        headers: Mapping[str, str] | None = None,
        data: Mapping[str, str] | None = None,
    ) -> tuple[str, Any]:
        endpoint = redact_url(str(url))
        _logger.debug("%s %s", method, endpoint)
        try:
            async with self._http.request(method, url, headers=headers, data=data) as resp:
                text = await resp.text()
                if resp.status >= 300:
                    raise TransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
                return text, resp.headers
        except TransportError:
            raise
        except aiohttp.ClientError as exc:
            raise TransportError(f"Request to {endpoint} failed: {exc}", endpoint=endpoint) from exc
        except asyncio.TimeoutError as exc:
            raise TransportError(f"Request to {endpoint} timed out", endpoint=endpoint) from exc

    async def get_json(self, url: str | URL, *, headers: Mapping[str, str] | None = None) -> Any:
        text, _headers = await self._request("GET", url, headers=headers)
        return _decode_json(text, redact_url(str(url)))

    async def post_form(self, url: str | URL, form: Mapping[str, str]) -> dict[str, Any]:
        text, _headers = await self._request(
            "POST",
            url,
            headers={"content-type": "application/x-www-form-urlencoded"},
            data=form,
        )
        body = _decode_json(text, str(url))
        if not isinstance(body, dict):
            raise TransportError(f"Expected a JSON object from {url}", endpoint=str(url))
        return body

    async def get_json_with_cookies(
        self,
        url: str | URL,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> tuple[Any, str]:
        text, resp_headers = await self._request("GET", url, headers=headers)
        return _decode_json(text, redact_url(str(url))), cookie_header_from(resp_headers)
