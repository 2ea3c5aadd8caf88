"""Shared fixtures for the model_library test suite."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List

import pytest

from LocalMT.ModelLibrary.events import Event, EventBus
from LocalMT.ModelLibrary.registry import PackageRegistry
from LocalMT.ModelLibrary.settings import LibrarySettings, invalidate_default_settings_cache
from LocalMT.ModelLibrary.testing import make_settings


class RecordingBus(EventBus):
    """Event bus that keeps every emitted event for assertions."""

    def __init__(self) -> None:
        super().__init__()
        self.events: List[Event] = []
        self.subscribe(self.events.append)

    def types(self) -> List[str]:
        return [event.type for event in self.events]

    def of_type(self, type: str) -> List[Event]:
        return [event for event in self.events if event.type == type]


@pytest.fixture
def bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def registry(bus: RecordingBus) -> PackageRegistry:
    return PackageRegistry(bus)


@pytest.fixture
def settings(tmp_path: Path) -> LibrarySettings:
    return make_settings(tmp_path)


@pytest.fixture
def managed_dir(settings: LibrarySettings) -> Path:
    settings.managed_dir.mkdir(parents=True, exist_ok=True)
    return settings.managed_dir


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch):
    """Keep user environment overrides and logging handlers out of tests."""

    for name in ("MTLIB_MANAGED_DIR", "MTLIB_CATALOG_URL", "MTLIB_LOG_LEVEL", "MTLIB_LOG_DIR", "MTLIB_CONFIG"):
        monkeypatch.delenv(name, raising=False)
    invalidate_default_settings_cache()
    yield
    invalidate_default_settings_cache()
    logger = logging.getLogger("LocalMT.ModelLibrary")
    for handler in list(logger.handlers):
        if getattr(handler, "_mtlib_managed", False):
            logger.removeHandler(handler)
            handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
