"""Shared plumbing for the HTTP-transported adapters."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel

from backends.errors import InvalidConfigurationError, InvalidResponseError
from backends.registry import ProviderKind

logger = logging.getLogger(__name__)

ResponseT = TypeVar("ResponseT", bound=BaseModel)


def normalize_http_endpoint(value: str) -> str:
    """Return `value` without a trailing slash; raise ValueError if it is not an http(s) URL."""
    vv = (value or "").strip()
    if not vv:
        raise ValueError("endpoint must be a non-empty string")
    try:
        url = httpx.URL(vv)
    except Exception as e:
        raise ValueError(f"endpoint is not a valid URL: {vv!r}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ValueError(f"endpoint must be an http(s) URL with a host: {vv!r}")
    return vv.rstrip("/")


class HttpBackend:
    """Base for adapters that talk JSON over HTTP.

    When no `client` is injected a short-lived `httpx.AsyncClient` is opened per
    call; an injected client is shared and never closed here.
    """

    kind: ProviderKind

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        api_key: Optional[str] = None,
        request_timeout_s: float = 600.0,
        connect_timeout_s: float = 5.0,
    ) -> None:
        try:
            self.base: str = normalize_http_endpoint(base_url)
        except ValueError as e:
            raise InvalidConfigurationError(f"{self.kind.display_name}: {e}") from e
        self._client = client
        self._headers: Dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        # httpx supports a rich Timeout object; use connect/read/write limits.
        self._timeout = httpx.Timeout(
            connect=connect_timeout_s, read=request_timeout_s, write=30.0, pool=connect_timeout_s
        )

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    def _url(self, path: str) -> str:
        return f"{self.base}{path}"

    async def _post(self, path: str, payload: BaseModel, response_model: Type[ResponseT]) -> ResponseT:
        url = self._url(path)
        body = payload.model_dump(exclude_none=True)
        async with self._session() as client:
            resp = await client.post(url, json=body, headers=self._headers, timeout=self._timeout)
            resp.raise_for_status()
        return self._decode(resp, response_model)

    async def _get(self, path: str, response_model: Type[ResponseT], *, timeout: Optional[float] = None) -> ResponseT:
        url = self._url(path)
        async with self._session() as client:
            resp = await client.get(url, headers=self._headers, timeout=timeout or self._timeout)
            resp.raise_for_status()
        return self._decode(resp, response_model)

    def _decode(self, resp: httpx.Response, response_model: Type[ResponseT]) -> ResponseT:
        try:
            return response_model.model_validate(resp.json())
        except ValueError as e:
            logger.debug("Undecodable %s response from %s: %s", self.kind.value, resp.request.url, resp.text[:500])
            raise InvalidResponseError(
                f"{self.kind.display_name} returned an unexpected payload from {resp.request.url}: {e}"
            ) from e


__all__ = ["HttpBackend", "normalize_http_endpoint"]
