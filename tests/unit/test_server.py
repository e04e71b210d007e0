"""Unit tests for the host wiring in offlineworker.server."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest
import respx
from starlette.requests import Request

from offlineworker.config import Settings
from offlineworker.lifecycle import LifecyclePhase
from offlineworker.server import _origin_url, build_worker, start_worker

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from offlineworker.state import AppState


def _request(path: str, query: str = "") -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": path,
        "query_string": query.encode(),
        "headers": [],
        "server": ("testserver", 80),
        "scheme": "http",
    })


class TestOriginUrl:
    def test_path_mapped_under_origin(self) -> None:
        url = _origin_url(_request("/images/apple.png"), "https://game.example/app/")
        assert url == "https://game.example/app/images/apple.png"

    def test_root_maps_to_origin(self) -> None:
        url = _origin_url(_request("/"), "https://game.example/app/")
        assert url == "https://game.example/app/"

    def test_query_preserved(self) -> None:
        url = _origin_url(_request("/index.html", "lang=ja"), "https://game.example/")
        assert url == "https://game.example/index.html?lang=ja"

    def test_absolute_url_in_path_rejected(self) -> None:
        url = _origin_url(_request("/https://evil.example/steal"), "https://game.example/")
        assert url is None

    def test_scheme_relative_path_stays_on_origin(self) -> None:
        url = _origin_url(_request("//evil.example/steal"), "https://game.example/")
        assert url is not None
        assert httpx.URL(url).host == "game.example"

    def test_parent_traversal_rejected(self) -> None:
        url = _origin_url(_request("/../admin/"), "https://game.example/app/")
        assert url is None


@pytest.fixture()
async def worker(http_client: httpx.AsyncClient) -> AsyncIterator[AppState]:
    settings = Settings(
        worker={"origin": "https://game.example/"},
        store={"db_path": ":memory:", "cacheset_db_path": ":memory:"},
    )
    state = build_worker(settings, http_client)
    yield state
    await state.controller.shutdown()
    await state.cache_set.close()
    await state.store.close()


class TestStartWorker:
    async def test_online_start_activates(
        self, worker: AppState, online: respx.MockRouter
    ) -> None:
        assert await start_worker(worker) is True
        assert worker.installed is True
        assert worker.controller.phase == LifecyclePhase.ACTIVE
        assert await worker.store.get_version() == "1.0.0"

    async def test_offline_start_reports_failure(
        self, worker: AppState, origin_mock: respx.MockRouter
    ) -> None:
        origin_mock.route(host="game.example").mock(
            side_effect=httpx.ConnectError("Connection refused")
        )

        assert await start_worker(worker) is False
        assert worker.installed is False
        assert worker.controller.phase == LifecyclePhase.REDUNDANT
