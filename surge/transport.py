"""
HTTP transport: the client virtual users dispatch through.

The harness depends only on the HttpClient protocol. HttpxClient is the
production implementation over a shared httpx.AsyncClient; tests and the
fault injector provide their own.

Latency is wall-clock time from just before dispatch until the full body
has been read, in milliseconds.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

import httpx

from surge.exceptions import SurgeTransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpResponse:
    """
    A completed response.

    Attributes:
        status_code: HTTP status.
        raw_body: Undecoded body bytes.
        latency_ms: Dispatch-to-body-read wall time in milliseconds.
    """

    status_code: int
    raw_body: bytes
    latency_ms: float


class HttpClient(Protocol):
    """Anything that can send one request and return an HttpResponse."""

    async def send(
        self,
        method: str,
        url: str,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> HttpResponse:
        """
        Send one request.

        Raises:
            SurgeTransportError: The request did not produce a response.
        """
        ...


def _error_kind(exc: httpx.HTTPError) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return "timeout"
    if isinstance(exc, httpx.NetworkError):
        return "connection"
    return "protocol"


class HttpxClient:
    """
    HttpClient over httpx.AsyncClient.

    One instance is shared by every virtual user of a run; httpx pools
    connections up to max_connections.

    Example:
        async with HttpxClient("http://localhost:8081", timeout=10) as client:
            response = await client.send("GET", "/api/products")
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        max_connections: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        limits = httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_connections,
        )
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            limits=limits,
            transport=transport,
        )

    async def send(
        self,
        method: str,
        url: str,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> HttpResponse:
        start = time.perf_counter()
        try:
            response = await self._client.request(
                method,
                url,
                json=body,
                headers=dict(headers) if headers else None,
            )
        except httpx.HTTPError as exc:
            kind = _error_kind(exc)
            logger.debug("Transport %s on %s %s: %s", kind, method, url, exc)
            raise SurgeTransportError(
                f"{type(exc).__name__}: {exc}",
                kind=kind,
                method=method,
                url=url,
            ) from exc
        # request() reads the full body before returning.
        latency_ms = (time.perf_counter() - start) * 1000.0
        return HttpResponse(
            status_code=response.status_code,
            raw_body=response.content,
            latency_ms=latency_ms,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpxClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
