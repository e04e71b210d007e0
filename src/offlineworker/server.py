"""Host entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Wire the worker components into AppState via the lifespan context manager
- Drive install and activate once per start
- Proxy page requests through the worker's fetch hook
- Stream client notifications as Server-Sent Events
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import httpx
import structlog
import uvicorn
from starlette.applications import Starlette
from starlette.responses import PlainTextResponse, Response, StreamingResponse
from starlette.routing import Route

from offlineworker import __version__
from offlineworker.cacheset import EphemeralCacheSet
from offlineworker.clients import ClientRegistry
from offlineworker.config import Settings
from offlineworker.errors import WorkerError
from offlineworker.interceptor import FetchInterceptor
from offlineworker.lifecycle import LifecycleController
from offlineworker.network import Network, build_http_client, normalize_url, within_origin
from offlineworker.pending import PendingWork
from offlineworker.state import AppState
from offlineworker.store import StructuredStore
from offlineworker.version_gate import VersionGate

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, AsyncIterator

    from starlette.requests import Request

log = structlog.get_logger()

MESSAGES_PATH = "/__worker/messages"

# Hop-by-hop and framing headers are never forwarded in either direction.
_HOP_HEADERS = frozenset({
    "connection",
    "content-length",
    "host",
    "keep-alive",
    "transfer-encoding",
    "upgrade",
})
# httpx hands back decoded bodies.
_RESPONSE_DROP_HEADERS = _HOP_HEADERS | {"content-encoding"}
# A HEAD reply has no body, so its content-length is passed through.
_HEAD_DROP_HEADERS = _RESPONSE_DROP_HEADERS - {"content-length"}


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Worker wiring
# ---------------------------------------------------------------------------


def build_worker(settings: Settings, http_client: httpx.AsyncClient) -> AppState:
    """Construct every worker component around an existing HTTP client."""
    network = Network(http_client, settings.worker.origin)
    store = StructuredStore(settings.store.db_path)
    cache_set = EphemeralCacheSet(settings.store.cacheset_db_path, network)
    clients = ClientRegistry()
    pending = PendingWork()

    interceptor = FetchInterceptor(settings.worker, cache_set, store, network, pending)
    version_gate = VersionGate(settings.worker, store, network, clients)
    controller = LifecycleController(
        settings.worker,
        cache_set,
        store,
        network,
        clients,
        interceptor,
        version_gate,
        pending,
    )

    return AppState(
        settings=settings,
        http_client=http_client,
        network=network,
        store=store,
        cache_set=cache_set,
        clients=clients,
        pending=pending,
        controller=controller,
    )


async def start_worker(state: AppState) -> bool:
    """Install, then activate once the new worker asked to skip waiting.

    Returns False if installation failed. Requests are still served in that
    case, from whatever the previous deployment left in both tiers.
    """
    try:
        await state.controller.on_install()
    except WorkerError as exc:
        log.warning(
            "worker_install_rejected",
            generation=state.settings.worker.generation,
            code=exc.code,
        )
        return False

    state.installed = True
    if state.clients.skip_waiting_requested:
        await state.controller.on_activate()
    return True


@asynccontextmanager
async def worker_lifespan(settings: Settings) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for the host's lifetime."""
    log.info(
        "worker_starting",
        version=__version__,
        origin=settings.worker.origin,
        generation=settings.worker.generation,
    )

    http_client = build_http_client(settings.network)
    state = build_worker(settings, http_client)
    await start_worker(state)

    log.info(
        "worker_started",
        phase=state.controller.phase,
        update_available=state.controller.update_available,
    )

    try:
        yield state
    finally:
        await state.controller.shutdown()
        await state.cache_set.close()
        await state.store.close()
        await http_client.aclose()
        log.info("worker_stopping")


# ---------------------------------------------------------------------------
# HTTP surface
# ---------------------------------------------------------------------------


def _origin_url(request: Request, origin: str) -> str | None:
    """Map a request path onto the game origin. ``None`` if it escapes the origin."""
    target = request.url.path.lstrip("/")
    if request.url.query:
        target = f"{target}?{request.url.query}"
    url = normalize_url(target, origin)
    return url if within_origin(url, origin) else None


async def proxy(request: Request) -> Response:
    """Route one page request through the worker's fetch hook."""
    state: AppState = request.state.worker
    target = _origin_url(request, state.settings.worker.origin)
    if target is None:
        log.warning("proxy_rejected", path=request.url.path)
        return PlainTextResponse("Not Found", status_code=404)

    body = await request.body()
    outgoing = httpx.Request(
        request.method,
        target,
        headers=[(k, v) for k, v in request.headers.items() if k.lower() not in _HOP_HEADERS],
        content=body or None,
    )

    response = await state.controller.on_fetch(outgoing)

    drop = _HEAD_DROP_HEADERS if request.method == "HEAD" else _RESPONSE_DROP_HEADERS
    return Response(
        content=response.content,
        status_code=response.status_code,
        headers={k: v for k, v in response.headers.items() if k.lower() not in drop},
    )


async def messages(request: Request) -> StreamingResponse:
    """Register the caller as a client page and stream its messages."""
    state: AppState = request.state.worker
    client = state.clients.connect()

    async def stream() -> AsyncIterator[str]:
        try:
            yield f"event: connected\ndata: {json.dumps({'id': client.id})}\n\n"
            while True:
                message = await client.inbox.get()
                yield f"data: {json.dumps(message)}\n\n"
        finally:
            state.clients.disconnect(client)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


def create_app(settings: Settings) -> Starlette:
    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncGenerator[dict[str, AppState], None]:
        async with worker_lifespan(settings) as state:
            yield {"worker": state}

    return Starlette(
        routes=[
            Route(MESSAGES_PATH, messages, methods=["GET"]),
            Route(
                "/{path:path}",
                proxy,
                methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            ),
        ],
        lifespan=lifespan,
    )


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    settings = Settings()
    _setup_logging(settings)

    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,  # Disable uvicorn's default logging; structlog handles it
    )


if __name__ == "__main__":
    main()
