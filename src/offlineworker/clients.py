"""In-process client registry used by the bundled host.

Each connected page owns an unbounded inbox. Posting never blocks and
never waits for the page to read: messages are fire-and-forget.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

import structlog

log = structlog.get_logger()

_client_ids = itertools.count(1)


class Client:
    """A connected page and its message inbox."""

    def __init__(self, client_id: str | None = None) -> None:
        self.id = client_id or f"client-{next(_client_ids)}"
        self.controlled = False
        self.inbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    def post_message(self, message: dict[str, Any]) -> None:
        self.inbox.put_nowait(message)


class ClientRegistry:
    """Tracks open pages and which of them the active worker controls.

    Implements WorkerHost: once ``claim()`` has run, every page that is
    already open and every page that connects later is controlled.
    """

    def __init__(self) -> None:
        self._clients: dict[str, Client] = {}
        self.claimed = False
        self.skip_waiting_requested = False

    def __len__(self) -> int:
        return len(self._clients)

    def connect(self, client_id: str | None = None) -> Client:
        client = Client(client_id)
        client.controlled = self.claimed
        self._clients[client.id] = client
        log.debug("client_connected", client_id=client.id, controlled=client.controlled)
        return client

    def disconnect(self, client: Client) -> None:
        self._clients.pop(client.id, None)
        log.debug("client_disconnected", client_id=client.id)

    def skip_waiting(self) -> None:
        self.skip_waiting_requested = True

    async def claim(self) -> None:
        self.claimed = True
        for client in self._clients.values():
            client.controlled = True
        log.info("clients_claimed", count=len(self._clients))

    async def match_all(self) -> list[Client]:
        """Every controlled client, in connection order."""
        return [client for client in self._clients.values() if client.controlled]
