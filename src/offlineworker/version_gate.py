"""Deployment version check and client notification.

The version descriptor is always fetched from the network, never from a
cache: a cached descriptor would report the version already installed.
Being offline is indistinguishable from "no update": the persisted record
is only touched after a descriptor was actually read.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from offlineworker.errors import ErrorCode, WorkerError
from offlineworker.models.resource import UpdateMessage, VersionDescriptor

if TYPE_CHECKING:
    from offlineworker.config import WorkerSettings
    from offlineworker.protocols import NetworkProtocol, StoreProtocol, WorkerHost

log = structlog.get_logger()


class VersionGate:
    def __init__(
        self,
        settings: WorkerSettings,
        store: StoreProtocol,
        network: NetworkProtocol,
        host: WorkerHost,
    ) -> None:
        self._settings = settings
        self._store = store
        self._network = network
        self._host = host

    async def fetch_descriptor(self) -> VersionDescriptor:
        """Fetch and parse the version descriptor.

        Raises WorkerError(VERSION_FETCH_FAILED) when the descriptor is
        unreachable, missing, or malformed.
        """
        try:
            response = await self._network.fetch(self._settings.version_url)
        except WorkerError as exc:
            raise WorkerError(
                code=ErrorCode.VERSION_FETCH_FAILED,
                message=f"Version descriptor unreachable: {exc.message}",
                recoverable=True,
            ) from exc

        if not response.is_success:
            raise WorkerError(
                code=ErrorCode.VERSION_FETCH_FAILED,
                message=f"HTTP {response.status_code} fetching version descriptor",
                recoverable=True,
            )

        try:
            return VersionDescriptor.model_validate_json(response.content)
        except ValidationError as exc:
            raise WorkerError(
                code=ErrorCode.VERSION_FETCH_FAILED,
                message=f"Malformed version descriptor: {exc}",
                recoverable=False,
            ) from exc

    async def check(self) -> bool:
        """Return True if the deployed version differs from the persisted one.

        The first successful check only records the version. Never raises.
        """
        try:
            descriptor = await self.fetch_descriptor()
        except WorkerError as exc:
            emit = log.info if exc.recoverable else log.warning
            emit("version_check_skipped", code=exc.code, reason=exc.message)
            return False

        current = await self._store.get_version()
        log.info("version_checked", current=current, deployed=descriptor.version)

        if current is None:
            await self._store.put_version(descriptor.version)
            log.info("version_recorded", version=descriptor.version, first_run=True)
            return False

        if current == descriptor.version:
            return False

        await self._store.put_version(descriptor.version)
        log.info("version_changed", previous=current, version=descriptor.version)
        return True

    async def notify(self) -> int:
        """Post an update message to every controlled client. Returns the count."""
        message = UpdateMessage(message=self._settings.update_message).model_dump()
        clients = await self._host.match_all()
        posted = 0
        for client in clients:
            try:
                client.post_message(message)
            except Exception:
                log.warning("client_notify_error", client_id=client.id, exc_info=True)
                continue
            posted += 1
        log.info("clients_notified", count=posted)
        return posted

    async def run(self) -> bool:
        """Check the version and notify clients on change."""
        updated = await self.check()
        if updated:
            await self.notify()
        return updated
