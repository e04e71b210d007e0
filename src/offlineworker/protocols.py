"""Protocol interfaces for swappable components.

The lifecycle controller, interceptor and version gate reference these
protocols, not the concrete implementations. This allows:
- Tests to use lightweight in-memory implementations
- A different host (browser bridge, test harness, ASGI proxy) to drive the
  same worker hooks
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterable

    import httpx

    from offlineworker.cacheset import CacheGeneration
    from offlineworker.models.resource import Resource, VersionRecord


class StoreProtocol(Protocol):
    """Interface for the durable structured store."""

    async def get(self, url: str) -> Resource | None: ...

    async def put(self, resource: Resource) -> bool: ...

    async def get_version(self) -> str | None: ...

    async def get_version_record(self) -> VersionRecord | None: ...

    async def put_version(self, version: str) -> bool: ...


class CacheSetProtocol(Protocol):
    """Interface for the generation-tagged request cache."""

    async def open(self, generation: str) -> CacheGeneration: ...

    async def match(
        self, request: httpx.Request, generation: str | None = None
    ) -> httpx.Response | None: ...

    async def put(
        self, request: httpx.Request, response: httpx.Response, generation: str
    ) -> None: ...

    async def add_all(self, urls: Iterable[str], generation: str) -> None: ...

    async def delete(self, generation: str) -> bool: ...

    async def list_generations(self) -> list[str]: ...


class NetworkProtocol(Protocol):
    """Interface for outgoing requests."""

    def normalize(self, url: str) -> str: ...

    def build_request(self, url: str, method: str = "GET") -> httpx.Request: ...

    async def fetch(self, request: httpx.Request | str) -> httpx.Response: ...


class ClientProtocol(Protocol):
    """A page controlled by the worker."""

    id: str

    def post_message(self, message: dict[str, Any]) -> None: ...


class WorkerHost(Protocol):
    """What the hosting runtime offers the worker."""

    def skip_waiting(self) -> None: ...

    async def claim(self) -> None: ...

    async def match_all(self) -> list[ClientProtocol]: ...


class WorkerHooks(Protocol):
    """The event capability set a host drives."""

    async def on_install(self) -> None: ...

    async def on_activate(self) -> None: ...

    async def on_fetch(self, request: httpx.Request) -> httpx.Response: ...
