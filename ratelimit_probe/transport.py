"""
HTTP request primitive built on aiohttp.

One ``HttpClient`` owns one pooled ``aiohttp.ClientSession`` for the whole run.
Transport failures never raise out of ``request``: like the stress engines
this toolkit grew out of, a timeout or connection error becomes a status-0
response carrying the error text, so a dead target shows up in the metrics
instead of crashing the logical user.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import aiohttp

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class HttpResponse:
    """Status, headers, body and latency of one HTTP exchange."""
    status: int
    latency_ms: float
    body: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    url: str = ""
    error: Optional[str] = None

    _json: Any = field(default=_MISSING, init=False, repr=False, compare=False)

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    def json(self) -> Any:
        """Parsed JSON body, or None when the body is empty or not JSON."""
        if self._json is _MISSING:
            try:
                self._json = json.loads(self.body) if self.body else None
            except (json.JSONDecodeError, TypeError):
                self._json = None
        return self._json

    def json_path(self, path: str) -> Any:
        """Look up a dotted path such as ``data.access_token``."""
        node = self.json()
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node


class HttpClient:
    """
    Thin async HTTP client used by the bootstrapper and the endpoint probe.

    Use as an async context manager::

        async with HttpClient(timeout=30) as client:
            response = await client.request("GET", url)
    """

    def __init__(
        self,
        timeout: float = 30.0,
        verify_ssl: bool = True,
        pool_size: int = 100,
        user_agent: str = "ratelimit-probe/1.0",
    ):
        self.timeout = aiohttp.ClientTimeout(total=timeout, connect=10)
        self.verify_ssl = verify_ssl
        self.pool_size = pool_size
        self.user_agent = user_agent
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "HttpClient":
        connector = aiohttp.TCPConnector(
            limit=self.pool_size,
            limit_per_host=self.pool_size,
            keepalive_timeout=30,
            enable_cleanup_closed=True,
        )
        self._session = aiohttp.ClientSession(timeout=self.timeout, connector=connector)
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        payload: Optional[Any] = None,
    ) -> HttpResponse:
        if self._session is None:
            raise RuntimeError("HttpClient must be used inside 'async with'")

        request_headers = {"User-Agent": self.user_agent, **(headers or {})}
        data = json.dumps(payload) if payload is not None else None

        start = time.perf_counter()
        try:
            async with self._session.request(
                method,
                url,
                headers=request_headers,
                data=data,
                ssl=None if self.verify_ssl else False,
            ) as response:
                body = await response.text(errors="replace")
                latency = (time.perf_counter() - start) * 1000
                return HttpResponse(
                    status=response.status,
                    latency_ms=latency,
                    body=body,
                    headers=dict(response.headers),
                    url=url,
                )
        except asyncio.TimeoutError:
            error = "Timeout"
        except aiohttp.ClientConnectorError as e:
            error = f"ConnectionError: {type(e).__name__}"
        except aiohttp.ClientError as e:
            error = type(e).__name__

        latency = (time.perf_counter() - start) * 1000
        logger.debug("%s %s failed after %.0fms: %s", method, url, latency, error)
        return HttpResponse(status=0, latency_ms=latency, url=url, error=error)
