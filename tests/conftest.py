"""Shared test fixtures for the offlineworker test suite."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import httpx
import pytest
import respx

from offlineworker.cacheset import EphemeralCacheSet
from offlineworker.clients import ClientRegistry
from offlineworker.config import WorkerSettings
from offlineworker.network import Network
from offlineworker.pending import PendingWork
from offlineworker.store import StructuredStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator

ORIGIN = "https://game.example/"

CORE_URLS = [
    "https://game.example/",
    "https://game.example/index.html",
    "https://game.example/manifest.json",
    "https://game.example/images/apple.png",
    "https://game.example/images/banana.png",
    "https://game.example/version.json",
]

VERSION_URL = "https://game.example/version.json"


def _route_origin(mock: respx.MockRouter, version: str) -> None:
    mock.get("https://game.example/").mock(
        return_value=httpx.Response(200, html="<html>root</html>")
    )
    mock.get("https://game.example/index.html").mock(
        return_value=httpx.Response(200, html="<html>index</html>")
    )
    mock.get("https://game.example/manifest.json").mock(
        return_value=httpx.Response(200, json={"name": "Fruit Game"})
    )
    mock.get("https://game.example/images/apple.png").mock(
        return_value=httpx.Response(
            200, content=b"apple-png", headers={"Content-Type": "image/png"}
        )
    )
    mock.get("https://game.example/images/banana.png").mock(
        return_value=httpx.Response(
            200, content=b"banana-png", headers={"Content-Type": "image/png"}
        )
    )
    mock.get(VERSION_URL).mock(
        return_value=httpx.Response(200, content=json.dumps({"version": version}).encode())
    )


@pytest.fixture()
def worker_settings() -> WorkerSettings:
    return WorkerSettings(origin=ORIGIN)


@pytest.fixture()
def origin_mock() -> Iterator[respx.MockRouter]:
    """respx router with nothing routed; unrouted requests fail the test."""
    with respx.mock(assert_all_called=False) as mock:
        yield mock


@pytest.fixture()
async def http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture()
def network(http_client: httpx.AsyncClient) -> Network:
    return Network(http_client, ORIGIN)


@pytest.fixture()
async def store() -> AsyncIterator[StructuredStore]:
    store = StructuredStore(":memory:")
    yield store
    await store.close()


@pytest.fixture()
async def cache_set(network: Network) -> AsyncIterator[EphemeralCacheSet]:
    cache_set = EphemeralCacheSet(":memory:", network)
    yield cache_set
    await cache_set.close()


@pytest.fixture()
def clients() -> ClientRegistry:
    return ClientRegistry()


@pytest.fixture()
def pending() -> PendingWork:
    return PendingWork()


@pytest.fixture()
def core_urls() -> list[str]:
    """The default core resources, resolved against the test origin."""
    return list(CORE_URLS)


@pytest.fixture()
def online(origin_mock: respx.MockRouter) -> respx.MockRouter:
    """Every core resource answers 200; the descriptor declares version 1.0.0.

    Re-routing a URL on the returned router replaces its response.
    """
    _route_origin(origin_mock, "1.0.0")
    return origin_mock
