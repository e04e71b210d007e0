"""Application state container.

AppState is created once at startup (inside the worker lifespan context
manager) and shared by every request handler of the host.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from offlineworker.cacheset import EphemeralCacheSet
    from offlineworker.clients import ClientRegistry
    from offlineworker.config import Settings
    from offlineworker.lifecycle import LifecycleController
    from offlineworker.network import Network
    from offlineworker.pending import PendingWork
    from offlineworker.store import StructuredStore


@dataclass
class AppState:
    """Holds all shared runtime state."""

    settings: Settings
    http_client: httpx.AsyncClient
    network: Network
    store: StructuredStore
    cache_set: EphemeralCacheSet
    clients: ClientRegistry
    pending: PendingWork
    controller: LifecycleController
    installed: bool = False
