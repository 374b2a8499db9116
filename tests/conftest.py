from collections.abc import Iterator
from pathlib import Path

import pytest

from deepscan_client.core.config import ConfigManager
from deepscan_client.core.global_paths import GlobalPath
from deepscan_client.util.log import Log, LogFormat, LogLevel


@pytest.fixture(autouse=True)
def isolated_paths(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory) -> Iterator[Path]:
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setattr(GlobalPath, "config", classmethod(lambda cls: str(home / "config")))
    monkeypatch.setattr(GlobalPath, "data", classmethod(lambda cls: str(home / "data")))
    monkeypatch.delenv("DEEPSCAN_SERVER", raising=False)
    monkeypatch.delenv("DEEPSCAN_ENABLE", raising=False)
    yield home


@pytest.fixture(autouse=True)
def config_context() -> Iterator[ConfigManager]:
    manager = ConfigManager()
    token = ConfigManager.provide(manager)
    try:
        yield manager
    finally:
        ConfigManager.restore(token)


@pytest.fixture(autouse=True)
def _log_teardown() -> Iterator[None]:
    yield
    Log.configure(level=LogLevel.INFO, format=LogFormat.KV, console=False, file=False)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
