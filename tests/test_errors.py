import httpx
import pytest

from serene.errors import (
    AuthError,
    EmailTakenError,
    EmailUnconfirmedError,
    InvalidCredentialsError,
    NetworkError,
    OAuthRedirectError,
    classify_service_error,
    error_from_response,
    error_from_transport,
)


@pytest.mark.parametrize(
    "body, expected",
    [
        ({"error_code": "invalid_credentials", "msg": "whatever"}, InvalidCredentialsError),
        ({"code": "email_not_confirmed", "msg": "x"}, EmailUnconfirmedError),
        ({"error": "invalid_grant", "error_description": "Refresh Token Not Found"}, InvalidCredentialsError),
        ({"error_code": "user_already_exists"}, EmailTakenError),
        ({"error_code": "flow_state_expired"}, OAuthRedirectError),
    ],
)
def test_structured_codes_win(body, expected):
    assert isinstance(classify_service_error(400, body), expected)


def test_structured_code_beats_misleading_message():
    err = classify_service_error(400, {"error_code": "email_not_confirmed", "msg": "Invalid login credentials"})
    assert isinstance(err, EmailUnconfirmedError)
    assert err.reason == "Invalid login credentials"


def test_message_fallback():
    assert isinstance(classify_service_error(400, {"msg": "Email not confirmed"}), EmailUnconfirmedError)
    assert isinstance(classify_service_error(422, {"message": "User already registered"}), EmailTakenError)


def test_unknown_error_keeps_service_message():
    err = classify_service_error(500, {"msg": "Database error saving new user"})
    assert isinstance(err, NetworkError)
    assert str(err) == "Database error saving new user"
    assert err.extra == {"status": 500}


def test_plain_text_response():
    response = httpx.Response(502, text="Bad Gateway")
    err = error_from_response(response)
    assert isinstance(err, NetworkError)
    assert err.reason == "Bad Gateway"


def test_empty_response_uses_status():
    err = error_from_response(httpx.Response(503))
    assert err.reason == "HTTP 503"


def test_transport_error():
    err = error_from_transport(httpx.ReadTimeout("timed out"))
    assert isinstance(err, NetworkError)
    assert err.extra == {"transport": "ReadTimeout"}


def test_error_kinds_are_auth_errors():
    err = InvalidCredentialsError("nope")
    assert isinstance(err, AuthError)
    assert err.code == "invalid_credentials"
    with pytest.raises(AuthError):
        raise err
