import asyncio

import pytest

from serene.auth.models import Profile
from serene.auth.reconciler import ProfileReconciler, derive_username, profile_from_identity
from serene.errors import NetworkError, ProfileLoadError
from tests.helpers.fakes import FakeProfileStore, make_identity


def test_derive_username_prefers_provider_hint():
    identity = make_identity(email="jo@x.com", provider="google", preferred_username="jojo")
    assert derive_username(identity) == "jojo"


def test_derive_username_from_email_handle_for_oauth():
    identity = make_identity(email="jane.doe@x.com", provider="google")
    assert derive_username(identity) == "jane.doe"


def test_derive_username_empty_for_email_provider():
    identity = make_identity(email="jane.doe@x.com", provider="email")
    assert derive_username(identity) == ""
    assert profile_from_identity(identity).username is None


def test_display_name_is_not_a_username():
    identity = make_identity(email="jane@x.com", provider="github", name="Jane Doe")
    profile = profile_from_identity(identity)
    assert profile.username == "jane"
    assert profile.name == "Jane Doe"


def test_profile_from_identity_copies_provider_metadata():
    identity = make_identity(
        user_id="u-9", email="k@x.com", provider="google", full_name="K", picture="http://img/k.png"
    )
    profile = profile_from_identity(identity)
    assert profile.id == "u-9"
    assert profile.provider == "google"
    assert profile.name == "K"
    assert profile.avatar_url == "http://img/k.png"
    assert profile.updated_at is not None


async def test_reconcile_returns_existing_profile_without_insert():
    existing = Profile(id="user-1", username="alice", email="alice@example.com")
    store = FakeProfileStore([existing])

    profile = await ProfileReconciler(store).reconcile(make_identity())

    assert profile == existing
    assert store.count("insert_if_absent") == 0


async def test_reconcile_creates_then_refetches():
    store = FakeProfileStore()
    identity = make_identity(user_id="g-1", email="gina@gmail.com", provider="google")

    profile = await ProfileReconciler(store).reconcile(identity)

    assert profile.username == "gina"
    assert [name for name, _ in store.calls] == ["fetch_by_id", "insert_if_absent", "fetch_by_id"]


async def test_concurrent_reconcile_yields_one_row():
    store = FakeProfileStore()
    store.insert_delay = 0.01
    reconciler = ProfileReconciler(store)
    identity = make_identity(user_id="g-1", email="gina@gmail.com", provider="google")

    results = await asyncio.gather(*(reconciler.reconcile(identity) for _ in range(5)))

    assert len(store.rows) == 1
    assert {p.id for p in results} == {"g-1"}


async def test_reconcile_wraps_store_failures():
    store = FakeProfileStore()
    store.fail("fetch_by_id", NetworkError("down"))

    with pytest.raises(ProfileLoadError) as exc_info:
        await ProfileReconciler(store).reconcile(make_identity())

    assert exc_info.value.code == "profile_load_failed"
    assert exc_info.value.extra == {"cause": "network_error"}


async def test_reconcile_missing_row_after_insert_is_an_error():
    class _BlackHole(FakeProfileStore):
        async def insert_if_absent(self, profile):
            self._record("insert_if_absent", profile)

    with pytest.raises(ProfileLoadError):
        await ProfileReconciler(_BlackHole()).reconcile(make_identity())
