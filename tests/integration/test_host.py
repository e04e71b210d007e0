"""End-to-end tests: the Starlette host driving the worker against a mocked origin."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import respx
from starlette.testclient import TestClient

from offlineworker.interceptor import OFFLINE_BODY
from offlineworker.lifecycle import LifecyclePhase
from offlineworker.server import create_app

if TYPE_CHECKING:
    from collections.abc import Callable

    from offlineworker.config import Settings
    from offlineworker.state import AppState

VERSION_URL = "https://game.example/version.json"


def _go_offline(mock: respx.MockRouter) -> None:
    mock.route(host="game.example").mock(side_effect=httpx.ConnectError("Connection refused"))


def _worker(client: TestClient) -> AppState:
    return client.app_state["worker"]


class TestOnlineStart:
    def test_installs_and_serves_core_resources(
        self, make_settings: Callable[..., Settings], online: respx.MockRouter
    ) -> None:
        with TestClient(create_app(make_settings())) as client:
            state = _worker(client)
            assert state.installed is True
            assert state.controller.phase == LifecyclePhase.ACTIVE

            response = client.get("/index.html")
            assert response.status_code == 200
            assert response.text == "<html>index</html>"

            root = client.get("/")
            assert root.text == "<html>root</html>"

    def test_serves_cached_resources_after_going_offline(
        self, make_settings: Callable[..., Settings], online: respx.MockRouter
    ) -> None:
        with TestClient(create_app(make_settings())) as client:
            online.clear()
            _go_offline(online)

            apple = client.get("/images/apple.png")
            assert apple.status_code == 200
            assert apple.content == b"apple-png"
            assert apple.headers["content-type"] == "image/png"

            missing = client.get("/images/cherry.png")
            assert missing.status_code == 503
            assert missing.text == OFFLINE_BODY
            assert missing.headers["content-type"].startswith("text/plain")

    def test_off_origin_target_not_proxied(
        self, make_settings: Callable[..., Settings], online: respx.MockRouter
    ) -> None:
        foreign = online.get("https://evil.example/steal").mock(
            return_value=httpx.Response(200, text="secret")
        )
        with TestClient(create_app(make_settings())) as client:
            response = client.get("/https://evil.example/steal")

            assert response.status_code == 404
            assert not foreign.called

    def test_head_served_from_cache_offline(
        self, make_settings: Callable[..., Settings], online: respx.MockRouter
    ) -> None:
        with TestClient(create_app(make_settings())) as client:
            online.clear()
            _go_offline(online)

            response = client.head("/images/apple.png")
            assert response.status_code == 200
            assert response.headers["content-type"] == "image/png"
            assert response.headers["content-length"] == str(len(b"apple-png"))
            assert response.content == b""

    def test_fetched_resource_survives_restart_offline(
        self, make_settings: Callable[..., Settings], online: respx.MockRouter
    ) -> None:
        online.get("https://game.example/levels/1.json").mock(
            return_value=httpx.Response(200, json={"level": 1})
        )
        with TestClient(create_app(make_settings())) as client:
            assert client.get("/levels/1.json").json() == {"level": 1}

        online.clear()
        _go_offline(online)
        with TestClient(create_app(make_settings())) as client:
            assert _worker(client).installed is False
            assert client.get("/levels/1.json").json() == {"level": 1}


class TestOfflineStart:
    def test_first_start_offline_serves_placeholder(
        self, make_settings: Callable[..., Settings], origin_mock: respx.MockRouter
    ) -> None:
        _go_offline(origin_mock)

        with TestClient(create_app(make_settings())) as client:
            state = _worker(client)
            assert state.installed is False
            assert state.controller.phase == LifecyclePhase.REDUNDANT

            response = client.get("/index.html")
            assert response.status_code == 503
            assert response.text == OFFLINE_BODY

    def test_failed_redeploy_keeps_previous_generation(
        self, make_settings: Callable[..., Settings], online: respx.MockRouter
    ) -> None:
        with TestClient(create_app(make_settings("fruit-game-v4"))):
            pass

        online.clear()
        _go_offline(online)
        with TestClient(create_app(make_settings("fruit-game-v5"))) as client:
            state = _worker(client)
            assert state.installed is False

            response = client.get("/manifest.json")
            assert response.status_code == 200
            assert response.json() == {"name": "Fruit Game"}


class TestRedeploy:
    def test_new_generation_replaces_old_and_records_version(
        self, make_settings: Callable[..., Settings], online: respx.MockRouter
    ) -> None:
        with TestClient(create_app(make_settings("fruit-game-v4"))) as client:
            state = _worker(client)
            assert state.controller.update_available is False

        online.get(VERSION_URL).mock(return_value=httpx.Response(200, json={"version": "1.0.1"}))
        online.get("https://game.example/index.html").mock(
            return_value=httpx.Response(200, html="<html>index v2</html>")
        )
        with TestClient(create_app(make_settings("fruit-game-v5"))) as client:
            state = _worker(client)
            assert state.controller.update_available is True

            online.clear()
            _go_offline(online)
            assert client.get("/index.html").text == "<html>index v2</html>"
            assert client.portal.call(state.store.get_version) == "1.0.1"
            assert client.portal.call(state.cache_set.list_generations) == ["fruit-game-v5"]
