"""Integration test fixtures.

Settings point both tiers at an isolated tmp directory so a test can start
the host more than once and observe what a previous run left behind.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from offlineworker.config import Settings

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


@pytest.fixture()
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Build host settings for one deployment, sharing tmp_path storage."""

    def _make(generation: str = "fruit-game-v4") -> Settings:
        return Settings(
            worker={"origin": "https://game.example/", "generation": generation},
            store={
                "db_path": str(tmp_path / "store.db"),
                "cacheset_db_path": str(tmp_path / "cacheset.db"),
            },
        )

    return _make
