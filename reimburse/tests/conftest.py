from __future__ import annotations

import pytest

from reimburse.core.config import get_settings
from reimburse.persistence.db import build_engine, build_session_factory, create_schema
from reimburse.persistence.transaction import TransactionCoordinator
from reimburse.services.telemetry import reset_telemetry
from reimburse.storage.files import LocalFileStorage
from reimburse.storage.folders import LocalFolderManager


@pytest.fixture(autouse=True)
def isolate_settings_and_telemetry(monkeypatch, tmp_path) -> None:
    # Point every settings-derived path at the test's temp dir and reset collectors.
    monkeypatch.setenv("STORAGE_DIR", str(tmp_path / "storage"))
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'settings.db'}")
    monkeypatch.setenv("EXT_RETRY_BACKOFF_MS", "1")
    get_settings.cache_clear()
    reset_telemetry()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def engine(tmp_path):
    # A fresh SQLite file per test keeps state isolated without cleanup passes.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def coordinator(session_factory) -> TransactionCoordinator:
    return TransactionCoordinator(session_factory)


@pytest.fixture
def storage(tmp_path) -> LocalFileStorage:
    return LocalFileStorage(tmp_path / "storage")


@pytest.fixture
def folders(tmp_path) -> LocalFolderManager:
    return LocalFolderManager(tmp_path / "storage")
