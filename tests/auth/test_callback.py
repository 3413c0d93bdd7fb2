import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from serene.auth.callback import CallbackParams
from serene.auth.routes import router
from serene.settings import get_settings


def test_fragment_overrides_query():
    params = CallbackParams.from_url(
        "http://app.test/auth/callback?code=from-query#code=from-fragment&expires_in=3600"
    )
    assert params.code == "from-fragment"
    assert params.expires_in == 3600


def test_error_message_prefers_description():
    params = CallbackParams.from_url("http://app.test/cb?error=access_denied")
    assert params.error_message == "Authentication error: access_denied"

    params = CallbackParams.from_mapping({"error": "server_error", "error_description": "Try again"})
    assert params.error_message == "Authentication error: Try again"


def test_unknown_keys_and_bad_expiry_are_dropped():
    params = CallbackParams.from_mapping({"state": "xyz", "access_token": "at", "expires_in": "soon"})
    assert params.access_token == "at"
    assert params.expires_in is None
    assert params.has_auth_data


def test_coerce_passes_params_through():
    params = CallbackParams(code="abc")
    assert CallbackParams.coerce(params) is params
    assert not CallbackParams.coerce({}).has_auth_data


@pytest.fixture
def client(store, settings):
    app = FastAPI()
    app.include_router(router)
    app.state.session_store = store
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as c:
        yield c


def test_callback_success_redirects_to_default_page(client, store):
    r = client.get("/auth/callback", params={"code": "abc"}, follow_redirects=False)

    assert r.status_code == 302
    assert r.headers["location"] == "/meditation"
    assert store.state.profile.username == "gina"


def test_callback_error_redirects_back_to_auth(client):
    r = client.get(
        "/auth/callback",
        params={"error": "access_denied", "error_description": "User cancelled"},
        follow_redirects=False,
    )

    assert r.status_code == 302
    assert r.headers["location"] == "/auth?error=Authentication+error%3A+User+cancelled"


def test_session_snapshot(client):
    client.get("/auth/callback", params={"code": "abc"}, follow_redirects=False)

    body = client.get("/auth/session").json()

    assert body["identity"]["email"] == "gina@gmail.com"
    assert body["profile"]["provider"] == "google"
    assert body["loading"] is False
    assert body["last_error"] is None


def test_missing_store_is_503():
    app = FastAPI()
    app.include_router(router)
    with TestClient(app) as c:
        assert c.get("/auth/session").status_code == 503
