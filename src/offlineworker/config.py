"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (OFFLINEWORKER__WORKER__ORIGIN=https://game.example/)
  2. offlineworker.yaml     (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional. The worker, store and network sections are
frozen: components receive them at construction and never see later edits.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, ConfigDict
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("offlineworker")
_DEFAULT_STORE_PATH = str(Path(_DEFAULT_DATA_DIR) / "store.db")
_DEFAULT_CACHESET_PATH = str(Path(_DEFAULT_DATA_DIR) / "cacheset.db")

DEFAULT_CORE_RESOURCES: tuple[str, ...] = (
    "./",
    "./index.html",
    "./manifest.json",
    "./images/apple.png",
    "./images/banana.png",
    "./version.json",
)


def _find_config_file() -> str | None:
    """Return the path of the first offlineworker.yaml found, or None."""
    candidates = [
        Path("offlineworker.yaml"),
        Path(platformdirs.user_config_dir("offlineworker")) / "offlineworker.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8080


class WorkerSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    origin: str = "http://localhost:8000/"
    # Bump on every deployment: the previous generation is dropped on activation.
    generation: str = "fruit-game-v4"
    core_resources: tuple[str, ...] = DEFAULT_CORE_RESOURCES
    version_url: str = "./version.json"
    update_message: str = "New version available, reloading..."


class StoreSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    db_path: str = _DEFAULT_STORE_PATH
    cacheset_db_path: str = _DEFAULT_CACHESET_PATH


class NetworkSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    # None disables the timeout entirely.
    timeout_seconds: float | None = 30.0
    user_agent: str = "offlineworker/1.0"


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: OFFLINEWORKER__SERVER__PORT=9090
        env_prefix="OFFLINEWORKER__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    worker: WorkerSettings = WorkerSettings()
    store: StoreSettings = StoreSettings()
    network: NetworkSettings = NetworkSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
