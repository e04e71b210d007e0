"""Worker lifecycle: install, activate, and fetch hooks.

Phases advance strictly in order:

    PARSED -> INSTALLING -> INSTALLED -> ACTIVATING -> ACTIVE

A failed install ends in REDUNDANT. The host keeps routing requests through
the caches of the previous deployment, which a failed install never touches.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from offlineworker.errors import ErrorCode, WorkerError
from offlineworker.models.resource import Resource

if TYPE_CHECKING:
    import httpx

    from offlineworker.config import WorkerSettings
    from offlineworker.interceptor import FetchInterceptor
    from offlineworker.pending import PendingWork
    from offlineworker.protocols import (
        CacheSetProtocol,
        NetworkProtocol,
        StoreProtocol,
        WorkerHost,
    )
    from offlineworker.version_gate import VersionGate

log = structlog.get_logger()


class LifecyclePhase(StrEnum):
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVE = "active"
    REDUNDANT = "redundant"


class LifecycleController:
    """Implements WorkerHooks for one deployment (one generation tag)."""

    def __init__(
        self,
        settings: WorkerSettings,
        cache_set: CacheSetProtocol,
        store: StoreProtocol,
        network: NetworkProtocol,
        host: WorkerHost,
        interceptor: FetchInterceptor,
        version_gate: VersionGate,
        pending: PendingWork,
    ) -> None:
        self._settings = settings
        self._cache_set = cache_set
        self._store = store
        self._network = network
        self._host = host
        self._interceptor = interceptor
        self._version_gate = version_gate
        self._pending = pending
        self.phase = LifecyclePhase.PARSED
        self.update_available = False

    def _require(self, expected: LifecyclePhase, action: str) -> None:
        if self.phase != expected:
            raise WorkerError(
                code=ErrorCode.INVALID_STATE,
                message=f"Cannot {action} in phase {self.phase}, expected {expected}",
            )

    # ------------------------------------------------------------------
    # Install
    # ------------------------------------------------------------------

    async def on_install(self) -> None:
        """Populate both tiers with the core resources.

        The cache-set batch is all-or-nothing and its failure aborts the
        install. The structured-store pass tolerates per-resource failures.
        """
        self._require(LifecyclePhase.PARSED, "install")
        self.phase = LifecyclePhase.INSTALLING
        generation = self._settings.generation
        log.info("worker_installing", generation=generation)

        try:
            cache = await self._cache_set.open(generation)
            await cache.add_all(self._settings.core_resources)
        except WorkerError as exc:
            self.phase = LifecyclePhase.REDUNDANT
            log.error(
                "worker_install_failed",
                generation=generation,
                code=exc.code,
                message=exc.message,
            )
            if exc.code == ErrorCode.INSTALL_BATCH_FAILED:
                raise
            raise WorkerError(
                code=ErrorCode.INSTALL_BATCH_FAILED,
                message=f"Install aborted: {exc.message}",
                recoverable=exc.recoverable,
            ) from exc

        stored = 0
        for url in self._settings.core_resources:
            if await self._store_resource(url):
                stored += 1
        log.info(
            "worker_installed",
            generation=generation,
            resources=len(self._settings.core_resources),
            stored=stored,
        )

        self.phase = LifecyclePhase.INSTALLED
        self._host.skip_waiting()

    async def _store_resource(self, url: str) -> bool:
        normalized = self._network.normalize(url)
        try:
            response = await self._network.fetch(normalized)
        except WorkerError as exc:
            log.warning(
                "resource_cache_failed",
                code=ErrorCode.RESOURCE_CACHE_FAILED,
                url=normalized,
                reason=exc.message,
            )
            return False
        if not response.is_success:
            log.warning(
                "resource_cache_failed",
                code=ErrorCode.RESOURCE_CACHE_FAILED,
                url=normalized,
                status_code=response.status_code,
            )
            return False
        return await self._store.put(Resource.from_response(normalized, response))

    # ------------------------------------------------------------------
    # Activate
    # ------------------------------------------------------------------

    async def on_activate(self) -> None:
        """Drop stale generations, take control of open pages, check the version."""
        self._require(LifecyclePhase.INSTALLED, "activate")
        self.phase = LifecyclePhase.ACTIVATING
        current = self._settings.generation
        log.info("worker_activating", generation=current)

        try:
            for name in await self._cache_set.list_generations():
                if name == current:
                    continue
                await self._cache_set.delete(name)
                log.info("generation_deleted", generation=name)
        except WorkerError as exc:
            # Stale generations are retried on the next activation.
            log.warning("generation_cleanup_error", code=exc.code, message=exc.message)

        await self._host.claim()

        try:
            self.update_available = await self._version_gate.run()
        except Exception:
            log.warning("version_gate_error", exc_info=True)
            self.update_available = False

        self.phase = LifecyclePhase.ACTIVE
        log.info("worker_activated", generation=current, update_available=self.update_available)

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def on_fetch(self, request: httpx.Request) -> httpx.Response:
        return await self._interceptor.handle(request)

    async def shutdown(self) -> None:
        """Let background write-through finish before the host lets go."""
        await self._pending.drain()
