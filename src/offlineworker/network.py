"""Network access for the worker.

All outgoing requests go through a single Network instance. The Network
receives an httpx.AsyncClient via constructor injection; the host owns the
client lifecycle.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urldefrag, urljoin, urlsplit

import httpx
import structlog

from offlineworker.errors import ErrorCode, WorkerError

if TYPE_CHECKING:
    from offlineworker.config import NetworkSettings

log = structlog.get_logger()


def build_http_client(settings: NetworkSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        # Redirects are followed like a page fetch would; the final URL is what gets cached.
        follow_redirects=True,
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers={"User-Agent": settings.user_agent},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


def normalize_url(url: str, origin: str) -> str:
    """Resolve ``url`` against the game origin and drop any fragment.

    ``'./index.html'`` with origin ``'https://game.example/app/'`` becomes
    ``'https://game.example/app/index.html'``. Absolute URLs pass through.
    """
    absolute = urljoin(origin, url)
    return urldefrag(absolute).url


def within_origin(url: str, origin: str) -> bool:
    """True if ``url`` has the origin's scheme and host and sits under its path."""
    target = urlsplit(url)
    base = urlsplit(origin)
    if (target.scheme, target.netloc.lower()) != (base.scheme, base.netloc.lower()):
        return False
    prefix = base.path if base.path.endswith("/") else base.path.rsplit("/", 1)[0] + "/"
    return target.path.startswith(prefix) or target.path == prefix.rstrip("/")


class Network:
    """Thin wrapper over the shared client that maps transport errors.

    A response is returned whatever its status code; only an unreachable
    network raises. Callers decide what a non-2xx status means to them.
    """

    def __init__(self, client: httpx.AsyncClient, origin: str) -> None:
        self._client = client
        self._origin = origin

    def normalize(self, url: str) -> str:
        return normalize_url(url, self._origin)

    def build_request(self, url: str, method: str = "GET") -> httpx.Request:
        return self._client.build_request(method, self.normalize(url))

    async def fetch(self, request: httpx.Request | str) -> httpx.Response:
        """Send a request (or GET a URL) and return the fully read response.

        Raises WorkerError(NETWORK_UNAVAILABLE) on connection failures and
        timeouts.
        """
        if isinstance(request, str):
            request = self.build_request(request)

        try:
            response = await self._client.send(request)
        except httpx.HTTPError as exc:
            log.info("network_unavailable", url=str(request.url), error=str(exc))
            raise WorkerError(
                code=ErrorCode.NETWORK_UNAVAILABLE,
                message=f"Network error fetching {request.url}: {exc}",
                recoverable=True,
            ) from exc

        log.debug(
            "fetch_complete",
            url=str(request.url),
            status_code=response.status_code,
            content_length=len(response.content),
        )
        return response
