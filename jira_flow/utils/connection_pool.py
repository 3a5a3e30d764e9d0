"""
Shared HTTP sessions for tracker API calls.

A chained run issues many small requests against the same tracker
(transition lists, transitions, field reads, user lookups). Every
``JiraRestStore`` pointing at one tracker borrows the same
``HTTPConnectionPool`` from the module-level manager, so those requests
reuse keep-alive connections instead of reconnecting per step.

Key Exports:
    HTTPConnectionPool: Lazily opened ``httpx.AsyncClient`` for one base URL
    ConnectionPoolManager: Registry of pools by name
    get_pool: Borrow a pool from the process-wide manager
    close_all_pools: Close every pool (called once on CLI exit)
"""

import asyncio
import time
from typing import Any

import httpx
import structlog

log = structlog.get_logger(__name__)

KEEPALIVE_EXPIRY = 30.0


class HTTPConnectionPool:
    """One tracker base URL with its auth headers and connection limits."""

    def __init__(
        self,
        base_url: str,
        max_connections: int = 10,
        max_keepalive_connections: int = 5,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.base_url = base_url
        self.max_connections = max_connections
        self.max_keepalive_connections = max_keepalive_connections
        self.timeout = timeout
        self.headers = headers or {}
        self.request_count = 0
        self._client: httpx.AsyncClient | None = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._client is not None

    async def initialize(self) -> None:
        """Open the underlying client. Safe to call repeatedly."""
        async with self._lock:
            if self.is_open:
                return
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=self.timeout,
                http2=True,
                limits=httpx.Limits(
                    max_connections=self.max_connections,
                    max_keepalive_connections=self.max_keepalive_connections,
                    keepalive_expiry=KEEPALIVE_EXPIRY,
                ),
            )
            log.info("tracker_session_opened", base_url=self.base_url, max_connections=self.max_connections)

    async def close(self) -> None:
        async with self._lock:
            if not self.is_open:
                return
            await self._client.aclose()
            self._client = None
            log.info("tracker_session_closed", base_url=self.base_url, requests=self.request_count)

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send one request relative to ``base_url``, opening the client if needed.

        Status codes are not checked here; callers map them to tracker errors.
        """
        if not self.is_open:
            await self.initialize()
        assert self._client is not None

        started = time.monotonic()
        response = await self._client.request(method, path, **kwargs)
        self.request_count += 1
        log.debug(
            "tracker_request",
            method=method,
            path=path,
            status=response.status_code,
            elapsed_ms=round((time.monotonic() - started) * 1000, 1),
        )
        return response

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", path, **kwargs)

    async def __aenter__(self) -> "HTTPConnectionPool":
        await self.initialize()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


class ConnectionPoolManager:
    """Pools keyed by name; the first caller's settings win."""

    def __init__(self) -> None:
        self._pools: dict[str, HTTPConnectionPool] = {}
        self._lock = asyncio.Lock()

    async def get_pool(
        self,
        name: str,
        base_url: str,
        max_connections: int = 10,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
    ) -> HTTPConnectionPool:
        async with self._lock:
            pool = self._pools.get(name)
            if pool is None:
                pool = HTTPConnectionPool(
                    base_url,
                    max_connections=max_connections,
                    timeout=timeout,
                    headers=headers,
                )
                self._pools[name] = pool
                log.debug("tracker_session_registered", name=name, base_url=base_url)
        await pool.initialize()
        return pool

    async def close_all(self) -> None:
        async with self._lock:
            pools = list(self._pools.values())
            self._pools.clear()
        for pool in pools:
            await pool.close()
        if pools:
            log.info("tracker_sessions_closed", count=len(pools))


_manager = ConnectionPoolManager()


async def get_pool(
    name: str,
    base_url: str,
    max_connections: int = 10,
    timeout: float = 30.0,
    headers: dict[str, str] | None = None,
) -> HTTPConnectionPool:
    """Borrow the named pool from the process-wide manager."""
    return await _manager.get_pool(name, base_url, max_connections=max_connections, timeout=timeout, headers=headers)


async def close_all_pools() -> None:
    await _manager.close_all()
