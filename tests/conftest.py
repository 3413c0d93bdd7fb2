"""Test-specific fixtures."""

import pytest

from serene.auth.reconciler import ProfileReconciler
from serene.auth.storage import MemoryStorage
from serene.auth.store import SessionStore
from serene.settings import Settings, get_settings
from tests.helpers.fakes import FakeAuthClient, FakeProfileStore


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch):
    """Keep a developer's SERENE_* environment and .env out of the tests."""
    import os

    for key in list(os.environ):
        if key.startswith("SERENE_"):
            monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        SERVICE_URL="http://service.test",
        ANON_KEY="anon-key",
        SITE_URL="http://app.test",
    )


@pytest.fixture
def auth():
    return FakeAuthClient()


@pytest.fixture
def profiles():
    return FakeProfileStore()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def navigated():
    return []


@pytest.fixture
def store(auth, profiles, settings, storage, navigated):
    s = SessionStore(
        auth,
        profiles,
        settings=settings,
        reconciler=ProfileReconciler(profiles),
        storage=storage,
        navigator=navigated.append,
    )
    yield s
    s.teardown()


@pytest.fixture
def restore_root_logging():
    """configure_logging() replaces root handlers; put pytest's back afterwards."""
    import logging

    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)
