import json
import time
from urllib.parse import parse_qs, urlsplit

import httpx
import jwt
import pytest

from serene.auth.client import AuthClient
from serene.auth.constants import AuthEvent
from serene.auth.models import AuthSession
from serene.auth.pkce import code_challenge
from serene.errors import (
    EmailTakenError,
    InvalidCredentialsError,
    NetworkError,
    OAuthRedirectError,
)

USER = {
    "id": "user-1",
    "email": "alice@example.com",
    "app_metadata": {"provider": "email"},
    "user_metadata": {"username": "alice"},
}


def _token_payload(access="at-1", refresh="rt-1", expires_in=3600):
    return {
        "access_token": access,
        "refresh_token": refresh,
        "token_type": "bearer",
        "expires_in": expires_in,
        "user": USER,
    }


class Recorder:
    """httpx.MockTransport handler keyed by (method, path)."""

    def __init__(self):
        self.routes = {}
        self.requests: list[httpx.Request] = []

    def on(self, method, path, status=200, body=None, exc=None):
        self.routes[(method, path)] = (status, body, exc)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body, exc = self.routes.get((request.method, request.url.path), (404, {"msg": "not found"}, None))
        if exc is not None:
            raise exc
        return httpx.Response(status, json=body) if body is not None else httpx.Response(status)


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
async def client(settings, storage, recorder):
    http = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    c = AuthClient(settings, storage, http=http)
    yield c
    await http.aclose()


@pytest.fixture
def events(client):
    seen = []
    client.on_auth_state_change(lambda event, session: seen.append((event, session)))
    return seen


async def test_password_sign_in_persists_and_notifies(client, recorder, storage, settings, events):
    recorder.on("POST", "/auth/v1/token", body=_token_payload())

    response = await client.sign_in_with_password("alice@example.com", "secret1")

    assert response.session.access_token == "at-1"
    assert storage.get_item(settings.STORAGE_KEY) is not None
    assert events[0][0] is AuthEvent.SIGNED_IN
    request = recorder.requests[0]
    assert request.url.params["grant_type"] == "password"
    assert request.headers["apikey"] == "anon-key"
    assert json.loads(request.content) == {"email": "alice@example.com", "password": "secret1"}


async def test_sign_in_rejection_is_classified(client, recorder):
    recorder.on(
        "POST",
        "/auth/v1/token",
        status=400,
        body={"error_code": "invalid_credentials", "msg": "Invalid login credentials"},
    )
    with pytest.raises(InvalidCredentialsError, match="Invalid login credentials"):
        await client.sign_in_with_password("alice@example.com", "nope")


async def test_transport_failure_is_network_error(client, recorder):
    recorder.on("POST", "/auth/v1/token", exc=httpx.ConnectError("refused"))
    with pytest.raises(NetworkError):
        await client.sign_in_with_password("alice@example.com", "secret1")


async def test_sign_up_pending_confirmation_returns_bare_user(client, recorder, events):
    recorder.on("POST", "/auth/v1/signup", body=USER)

    response = await client.sign_up(
        "alice@example.com", "secret1", data={"username": "alice"}, redirect_to="http://app.test/auth"
    )

    assert response.session is None
    assert response.user.id == "user-1"
    assert events == []
    request = recorder.requests[0]
    assert request.url.params["redirect_to"] == "http://app.test/auth"
    assert json.loads(request.content)["data"] == {"username": "alice"}


async def test_sign_up_existing_email(client, recorder):
    recorder.on("POST", "/auth/v1/signup", status=422, body={"msg": "User already registered"})
    with pytest.raises(EmailTakenError):
        await client.sign_up("alice@example.com", "secret1")


async def test_get_session_refreshes_expiring_token(client, recorder, storage, settings, events):
    stale = AuthSession.model_validate(_token_payload(expires_in=5))
    storage.set_item(settings.STORAGE_KEY, stale.model_dump_json())
    recorder.on("POST", "/auth/v1/token", body=_token_payload(access="at-2", refresh="rt-2"))

    session = await client.get_session()

    assert session.access_token == "at-2"
    assert recorder.requests[0].url.params["grant_type"] == "refresh_token"
    assert events[0][0] is AuthEvent.TOKEN_REFRESHED


async def test_rejected_refresh_signs_out_locally(client, recorder, storage, settings, events):
    stale = AuthSession.model_validate(_token_payload(expires_in=0))
    storage.set_item(settings.STORAGE_KEY, stale.model_dump_json())
    recorder.on("POST", "/auth/v1/token", status=400, body={"error": "invalid_grant"})

    assert await client.get_session() is None
    assert storage.get_item(settings.STORAGE_KEY) is None
    assert events == [(AuthEvent.SIGNED_OUT, None)]


async def test_corrupt_stored_session_is_discarded(client, storage, settings):
    storage.set_item(settings.STORAGE_KEY, "{not json")
    assert await client.get_session() is None
    assert storage.get_item(settings.STORAGE_KEY) is None


async def test_authorize_url_carries_pkce_and_offline_access(client, storage, settings):
    url = client.authorize_url(
        "google",
        redirect_to=settings.oauth_callback_url,
        scopes=["email"],
        query_params=settings.oauth_query_params(),
    )

    parts = urlsplit(url)
    query = {k: v[0] for k, v in parse_qs(parts.query).items()}
    assert parts.path == "/auth/v1/authorize"
    assert query["provider"] == "google"
    assert query["access_type"] == "offline"
    assert query["prompt"] == "consent"
    assert query["code_challenge_method"] == "s256"
    verifier = storage.get_item(f"{settings.STORAGE_KEY}-code-verifier")
    assert query["code_challenge"] == code_challenge(verifier)


async def test_authorize_url_rejects_email_provider(client, settings):
    with pytest.raises(OAuthRedirectError):
        client.authorize_url("email", redirect_to=settings.oauth_callback_url)


async def test_code_exchange_uses_stored_verifier(client, recorder, storage, settings, events):
    client.authorize_url("google", redirect_to=settings.oauth_callback_url)
    verifier = storage.get_item(f"{settings.STORAGE_KEY}-code-verifier")
    recorder.on("POST", "/auth/v1/token", body=_token_payload())

    session = await client.exchange_code_for_session("auth-code")

    assert session.user.id == "user-1"
    assert json.loads(recorder.requests[0].content) == {"auth_code": "auth-code", "code_verifier": verifier}
    assert storage.get_item(f"{settings.STORAGE_KEY}-code-verifier") is None
    assert events[0][0] is AuthEvent.SIGNED_IN


async def test_code_exchange_without_verifier(client):
    with pytest.raises(OAuthRedirectError):
        await client.exchange_code_for_session("auth-code")


async def test_set_session_reads_expiry_from_token(client, recorder):
    exp = int(time.time()) + 600
    token = jwt.encode({"sub": "user-1", "exp": exp}, "test-signing-key-0123456789abcdef0123", algorithm="HS256")
    recorder.on("GET", "/auth/v1/user", body=USER)

    session = await client.set_session(token, "rt-1")

    assert session.expires_at == exp
    assert recorder.requests[0].headers["authorization"] == f"Bearer {token}"


async def test_sign_out_clears_even_when_revoke_fails(client, recorder, storage, settings, events):
    storage.set_item(settings.STORAGE_KEY, AuthSession.model_validate(_token_payload()).model_dump_json())
    recorder.on("POST", "/auth/v1/logout", exc=httpx.ConnectError("offline"))

    with pytest.raises(NetworkError):
        await client.sign_out()

    assert storage.get_item(settings.STORAGE_KEY) is None
    assert events == [(AuthEvent.SIGNED_OUT, None)]
    assert recorder.requests[0].url.params["scope"] == "global"


async def test_listener_failure_does_not_break_call(client, recorder):
    def boom(event, session):
        raise RuntimeError("listener bug")

    client.on_auth_state_change(boom)
    recorder.on("POST", "/auth/v1/token", body=_token_payload())

    response = await client.sign_in_with_password("alice@example.com", "secret1")
    assert response.session is not None


async def test_update_user_without_session(client):
    with pytest.raises(Exception, match="Auth session missing"):
        await client.update_user(password="secret2")


async def test_non_json_success_body_is_network_error(settings, storage):
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, text="<html>maintenance</html>")))
    c = AuthClient(settings, storage, http=http)

    with pytest.raises(NetworkError, match="Unexpected response from auth service"):
        await c.sign_in_with_password("alice@example.com", "secret1")
    assert storage.get_item(settings.STORAGE_KEY) is None
    await http.aclose()


async def test_token_payload_missing_fields_is_network_error(client, recorder, storage, settings, events):
    recorder.on("POST", "/auth/v1/token", body={"token_type": "bearer"})

    with pytest.raises(NetworkError):
        await client.sign_in_with_password("alice@example.com", "secret1")
    assert storage.get_item(settings.STORAGE_KEY) is None
    assert events == []
