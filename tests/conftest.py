import asyncio

import pytest
from fastapi.testclient import TestClient

from mediaapp.core.config import get_settings
from mediaapp.core.db import create_engine, create_schema, create_session_factory
from mediaapp.core.runtime import build_runtime
from mediaapp.db.photo_store import SqlPhotoStore
from mediaapp.main import create_app
from tests.fakes import Fakes


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "no_default_env: disable the default MediaApp environment bootstrap fixture for tests that manage their own .env",
    )


@pytest.fixture(autouse=True)
def configure_environment(request, monkeypatch, tmp_path):
    if request.node.get_closest_marker("no_default_env"):
        get_settings.cache_clear()
        yield None
        get_settings.cache_clear()
        return

    db_path = tmp_path / "mediaapp_test.db"
    monkeypatch.setenv("MEDIAAPP_ENV", "test")
    monkeypatch.setenv("MEDIAAPP_LOG_LEVEL", "debug")
    monkeypatch.setenv("MEDIAAPP_DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("MEDIAAPP_QUEUE_BACKEND", "memory")
    monkeypatch.setenv("MEDIAAPP_EMBEDDED_WORKER", "false")
    monkeypatch.setenv("MEDIAAPP_CONSUME_POLL_INTERVAL_S", "0.05")
    monkeypatch.setenv("MEDIAAPP_SEARCH_ADMISSION_WAIT_S", "0.1")
    monkeypatch.setenv("MEDIAAPP_SHUTDOWN_GRACE_S", "1")
    monkeypatch.setenv("MEDIAAPP_BLOB_BACKEND", "local")
    monkeypatch.setenv("MEDIAAPP_LOCAL_BLOB_ROOT", str(tmp_path / "blobs"))
    monkeypatch.setenv("MEDIAAPP_WORKER_NAME", "test-worker")
    monkeypatch.delenv("UNSPLASH_API_KEY", raising=False)
    monkeypatch.delenv("MEDIAAPP_UNSPLASH_ACCESS_KEY", raising=False)

    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture()
def settings(configure_environment):
    return configure_environment


@pytest.fixture()
def fakes():
    return Fakes()


@pytest.fixture()
def runtime(settings, fakes):
    return build_runtime(
        settings,
        photo_source=fakes.source,
        blob_store=fakes.blobs,
        downloader=fakes.downloader,
    )


@pytest.fixture()
def client(runtime):
    app = create_app(runtime)
    with TestClient(app) as client:
        yield client


def run_with_store(settings, scenario):
    """Run ``scenario(store)`` against a fresh SQLite schema inside one event loop."""

    async def _run():
        engine = create_engine(settings)
        await create_schema(engine)
        try:
            store = SqlPhotoStore(create_session_factory(engine), dialect=engine.dialect.name)
            return await scenario(store)
        finally:
            await engine.dispose()

    return asyncio.run(_run())
