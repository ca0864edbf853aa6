from typing import Optional

import jwt
import pytest
import requests

import auth_functions
from auth_functions import build_token_url, decode_username, get_username
from movie_data_errors import AuthServiceError

SECRET = "reel-rating-test-secret-at-least-32-bytes"
AUTH_URL = "http://auth:9080"


class DummyResponse:
    def __init__(self, text: str, status_code: int = 200):
        self.text = text
        self.status_code = status_code


class DummyRequests:
    def __init__(self, response: Optional[DummyResponse] = None, error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.calls: list[tuple[str, float]] = []

    def get(self, url: str, timeout: float = None):
        self.calls.append((url, timeout))
        if self.error:
            raise self.error
        return self.response


def make_token(claims: dict, secret: str = SECRET) -> str:
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def fake_http(monkeypatch):
    def install(response=None, error=None):
        dummy = DummyRequests(response, error)
        monkeypatch.setattr(auth_functions.requests, "get", dummy.get)
        return dummy

    return install


def test_build_token_url_escapes_session_id():
    assert build_token_url("http://auth:9080/", "abc/def") == "http://auth:9080/reel-rating-auth-service/jwt/generate/abc%2Fdef"


def test_get_username_reads_upn_claim(fake_http):
    dummy = fake_http(DummyResponse(make_token({"upn": "alice"})))

    assert get_username("session-1", AUTH_URL, SECRET, ["HS256"], timeout=2.0) == "alice"
    assert dummy.calls == [("http://auth:9080/reel-rating-auth-service/jwt/generate/session-1", 2.0)]


def test_get_username_without_session_skips_http(fake_http):
    dummy = fake_http(DummyResponse(""))
    assert get_username(None, AUTH_URL, SECRET, ["HS256"]) is None
    assert dummy.calls == []


def test_empty_body_means_unknown_session(fake_http):
    fake_http(DummyResponse(""))
    assert get_username("expired", AUTH_URL, SECRET, ["HS256"]) is None


def test_rejected_session_status_returns_none(fake_http):
    fake_http(DummyResponse("nope", status_code=401))
    assert get_username("expired", AUTH_URL, SECRET, ["HS256"]) is None


def test_bad_signature_returns_none(fake_http):
    fake_http(DummyResponse(make_token({"upn": "mallory"}, secret="another-secret-that-is-32-bytes-long")))
    assert get_username("session-1", AUTH_URL, SECRET, ["HS256"]) is None


def test_token_without_upn_returns_none():
    assert decode_username(make_token({"sub": "alice"}), SECRET, ["HS256"]) is None


def test_unreachable_service_raises(fake_http):
    fake_http(error=requests.ConnectionError("refused"))
    with pytest.raises(AuthServiceError):
        get_username("session-1", AUTH_URL, SECRET, ["HS256"])


def test_server_error_raises(fake_http):
    fake_http(DummyResponse("boom", status_code=502))
    with pytest.raises(AuthServiceError):
        get_username("session-1", AUTH_URL, SECRET, ["HS256"])
