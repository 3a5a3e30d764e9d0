"""Process-lifetime cache for tracker metadata.

The Jira field catalog (display name -> field id) and user directory
lookups change rarely and are expensive to fetch, so each is loaded at most
once per process. There is no expiry: the cache is invalidated only by
restarting the process.

One ``TrackerCache`` is created by the store factory and passed by
reference into the store, which makes its scope explicit instead of
relying on module globals.

Key Exports:
    TrackerCache: Lazy field catalog plus identity memo.

Example:
    >>> cache = TrackerCache(seed={"Dev Start Date": "customfield_11516"})
    >>> await cache.field_id("Dev Start Date", loader=store.fetch_field_catalog)
    'customfield_11516'

Thread Safety:
    Catalog loading is guarded by an asyncio.Lock so concurrent lookups
    trigger a single fetch. The cache is not shared across processes.
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import structlog

log = structlog.get_logger(__name__)

CatalogLoader = Callable[[], Awaitable[list[dict[str, Any]]]]


class TrackerCache:
    """Field catalog and identity cache for one tracker session.

    Attributes:
        _seed: Field name -> id pairs known from configuration.
        _catalog: Field name -> id pairs fetched from the tracker, or None
            before the first load.
        _identities: Directory query -> identities already resolved.
    """

    def __init__(self, seed: Mapping[str, str] | None = None) -> None:
        """Initialize the cache.

        Args:
            seed: Field ids known up front; consulted before the catalog so
                configured fields never trigger a catalog fetch.
        """
        self._seed: dict[str, str] = dict(seed or {})
        self._catalog: dict[str, str] | None = None
        self._identities: dict[str, list[Any]] = {}
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def catalog_loaded(self) -> bool:
        """Check if the tracker's field catalog has been fetched."""
        return self._catalog is not None

    async def field_id(self, name: str, loader: CatalogLoader) -> str | None:
        """Resolve a field display name to its id.

        Args:
            name: Field display name
            loader: Coroutine function returning the catalog as a list of
                ``{"id": ..., "name": ...}`` entries. Called at most once.

        Returns:
            Field id, or None when the tracker has no such field.
        """
        if name in self._seed:
            self._hits += 1
            return self._seed[name]

        catalog = await self._ensure_catalog(loader)
        field_id = catalog.get(name)
        if field_id is None:
            self._misses += 1
            log.debug("field_not_in_catalog", field=name)
        else:
            self._hits += 1
        return field_id

    async def field_name(self, field_id: str, loader: CatalogLoader) -> str | None:
        """Reverse lookup: field id to display name."""
        for name, known_id in self._seed.items():
            if known_id == field_id:
                return name
        catalog = await self._ensure_catalog(loader)
        for name, known_id in catalog.items():
            if known_id == field_id:
                return name
        return None

    async def _ensure_catalog(self, loader: CatalogLoader) -> dict[str, str]:
        async with self._lock:
            if self._catalog is None:
                try:
                    entries = await loader()
                except Exception as e:
                    # A failed fetch is cached as empty until restart
                    log.warning("field_catalog_unavailable", error=str(e))
                    entries = []
                self._catalog = {
                    entry["name"]: entry["id"] for entry in entries if entry.get("name") and entry.get("id")
                }
                log.info("field_catalog_loaded", fields=len(self._catalog))
            return self._catalog

    def cached_identities(self, query: str) -> list[Any] | None:
        """Identities previously found for a directory query."""
        found = self._identities.get(query.strip().lower())
        if found is None:
            self._misses += 1
        else:
            self._hits += 1
        return found

    def remember_identities(self, query: str, identities: list[Any]) -> None:
        """Store a non-empty directory search result."""
        if identities:
            self._identities[query.strip().lower()] = list(identities)

    def get_stats(self) -> dict[str, Any]:
        """Hit/miss counters and sizes, for diagnostics."""
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total else 0.0,
            "catalog_size": len(self._catalog or {}),
            "identities": len(self._identities),
        }
