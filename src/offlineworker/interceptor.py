"""Per-request read / fallback / write-through chain.

Order of lookup (GET and HEAD; only GET is written through):
  1. Cache set   (request-keyed, fastest)
  2. Structured store (URL-keyed, survives generation changes)
  3. Network     (ok responses are written through to both tiers)
  4. Offline placeholder (503, plain text)

Write-through never delays the response: it runs as pending work that the
host drains before shutdown.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog

from offlineworker.cacheset import MATCH_METHODS
from offlineworker.errors import WorkerError
from offlineworker.models.resource import Resource

if TYPE_CHECKING:
    from offlineworker.config import WorkerSettings
    from offlineworker.pending import PendingWork
    from offlineworker.protocols import CacheSetProtocol, NetworkProtocol, StoreProtocol

log = structlog.get_logger()

OFFLINE_BODY = "Offline - Resource not available"


def offline_response(request: httpx.Request | None = None) -> httpx.Response:
    """The fixed placeholder for an uncached request while offline."""
    return httpx.Response(
        status_code=503,
        headers={"Content-Type": "text/plain"},
        text=OFFLINE_BODY,
        request=request,
        extensions={"reason_phrase": b"Service Unavailable"},
    )


class FetchInterceptor:
    def __init__(
        self,
        settings: WorkerSettings,
        cache_set: CacheSetProtocol,
        store: StoreProtocol,
        network: NetworkProtocol,
        pending: PendingWork,
    ) -> None:
        self._settings = settings
        self._cache_set = cache_set
        self._store = store
        self._network = network
        self._pending = pending

    async def handle(self, request: httpx.Request) -> httpx.Response:
        url = self._network.normalize(str(request.url))
        cacheable = request.method == "GET"

        if request.method in MATCH_METHODS:
            try:
                cached = await self._cache_set.match(request)
            except WorkerError as exc:
                log.warning("cacheset_match_error", url=url, code=exc.code, message=exc.message)
                cached = None
            if cached is not None:
                log.debug("fetch_served", source="cacheset", url=url)
                return cached

            resource = await self._store.get(url)
            if resource is not None:
                log.debug("fetch_served", source="store", url=url)
                return resource.to_response(request)

        try:
            response = await self._network.fetch(request)
        except WorkerError as exc:
            log.warning("fetch_offline", url=url, code=exc.code)
            return offline_response(request)

        if cacheable and response.is_success:
            self._pending.add(
                self._write_through(request, Resource.from_response(url, response)),
                name=f"write-through:{url}",
            )
        log.debug("fetch_served", source="network", url=url, status_code=response.status_code)
        return response

    async def _write_through(self, request: httpx.Request, resource: Resource) -> None:
        """Store one fetched resource in both tiers. Each tier fails on its own."""
        try:
            await self._cache_set.put(
                request, resource.to_response(request), self._settings.generation
            )
        except WorkerError as exc:
            log.warning(
                "cacheset_write_error", url=resource.url, code=exc.code, message=exc.message
            )
        await self._store.put(resource)
