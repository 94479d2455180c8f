import json

import flask
import pytest

from alya import auth
from alya.auth import (
    AuthError,
    AuthErrorScenario,
    AuthMiddleware,
    OIDCVerifier,
    RedisTokenCache,
    TokenCache,
    TokenVerifier,
    extract_token,
    register_auth_errcode,
    register_auth_msgid,
    set_default_errcode,
    set_default_msgid,
)


@pytest.fixture(autouse=True)
def fresh_registry(monkeypatch):
    monkeypatch.setattr(auth, "_scenario_to_msgid", {})
    monkeypatch.setattr(auth, "_scenario_to_errcode", {})
    monkeypatch.setattr(auth, "_defaults", auth._Defaults())


class FakeCache(TokenCache):
    def __init__(self, cached=False, get_error=None, set_error=None):
        self.cached = cached
        self.get_error = get_error
        self.set_error = set_error
        self.stored = []

    def get(self, token):
        if self.get_error:
            raise self.get_error
        return self.cached

    def set(self, token):
        if self.set_error:
            raise self.set_error
        self.stored.append(token)


class FakeVerifier(TokenVerifier):
    def __init__(self, error=None):
        self.error = error
        self.seen = []

    def verify(self, raw_token):
        self.seen.append(raw_token)
        if self.error:
            raise self.error
        return {"sub": raw_token}


class FakeRedis:
    def __init__(self):
        self.values = {}
        self.expiries = {}

    def set(self, key, value, ex=None):
        self.values[key] = value
        self.expiries[key] = ex

    def exists(self, key):
        return 1 if key in self.values else 0


@pytest.mark.parametrize(
    "header, expected",
    [("Bearer abcd", "abcd")],
)
def test_extract_token_valid(header, expected):
    assert extract_token(header) == expected


@pytest.mark.parametrize("header", ["Bear abcd", "Bearer ", "abcd", ""])
def test_extract_token_invalid(header):
    with pytest.raises(ValueError):
        extract_token(header)


def test_check_cached_token_skips_verification():
    cache = FakeCache(cached=True)
    verifier = FakeVerifier()
    mw = AuthMiddleware(verifier, cache, None)
    assert mw.check("Bearer token") == "token"
    assert verifier.seen == []
    assert cache.stored == []


def test_check_uncached_token_is_verified_and_cached():
    cache = FakeCache(cached=False)
    verifier = FakeVerifier()
    mw = AuthMiddleware(verifier, cache, None)
    assert mw.check("Bearer token") == "token"
    assert verifier.seen == ["token"]
    assert cache.stored == ["token"]


def test_check_missing_token_uses_defaults():
    mw = AuthMiddleware(FakeVerifier(), FakeCache(), None)
    with pytest.raises(AuthError) as info:
        mw.check(None)
    assert info.value.scenario is AuthErrorScenario.TOKEN_MISSING
    assert info.value.status_code == 401
    assert info.value.response.messages[0].errcode == "ROUTER_ERROR"
    assert info.value.response.messages[0].msgid == 0


def test_check_cache_failure_falls_back_to_default_error_code():
    mw = AuthMiddleware(FakeVerifier(), FakeCache(get_error=ConnectionError("down")), None)
    with pytest.raises(AuthError) as info:
        mw.check("Bearer token")
    assert info.value.status_code == 500
    assert info.value.scenario is AuthErrorScenario.TOKEN_CACHE_FAILED
    assert info.value.response.messages[0].errcode == "DEFAULT_ERROR_CODE"


def test_check_verification_failure():
    verifier = FakeVerifier(error=ValueError("bad"))
    cache = FakeCache()
    mw = AuthMiddleware(verifier, cache, None)
    with pytest.raises(AuthError) as info:
        mw.check("Bearer token")
    assert info.value.status_code == 401
    assert info.value.scenario is AuthErrorScenario.TOKEN_VERIFICATION_FAILED
    assert cache.stored == []


def test_check_cache_set_failure():
    mw = AuthMiddleware(FakeVerifier(), FakeCache(set_error=ConnectionError("down")), None)
    with pytest.raises(AuthError) as info:
        mw.check("Bearer token")
    assert info.value.status_code == 500
    assert info.value.scenario is AuthErrorScenario.TOKEN_CACHE_FAILED


def test_registered_codes_are_used():
    register_auth_msgid(AuthErrorScenario.TOKEN_VERIFICATION_FAILED, 1001)
    register_auth_errcode("TokenVerificationFailed", "token_verification_failed")
    mw = AuthMiddleware(FakeVerifier(error=ValueError("bad")), FakeCache(), None)
    with pytest.raises(AuthError) as info:
        mw.check("Bearer token")
    message = info.value.response.messages[0]
    assert (message.msgid, message.errcode) == (1001, "token_verification_failed")


def test_custom_defaults_apply_to_missing_token():
    set_default_msgid(9999)
    set_default_errcode("default_error")
    mw = AuthMiddleware(FakeVerifier(), FakeCache(), None)
    with pytest.raises(AuthError) as info:
        mw.check("Basic token")
    message = info.value.response.messages[0]
    assert (message.msgid, message.errcode) == (9999, "default_error")


def _app(mw):
    app = flask.Flask(__name__)
    mw.install(app)

    @app.route("/hello")
    def hello():
        return "hello"

    return app


def test_install_rejects_request_without_header():
    client = _app(AuthMiddleware(FakeVerifier(), FakeCache(), None)).test_client()
    reply = client.get("/hello")
    assert reply.status_code == 401
    assert reply.get_data(as_text=True) == (
        '{"status":"error","data":null,"messages":[{"msgid":0,"errcode":"ROUTER_ERROR"}]}'
    )


def test_install_passes_valid_request():
    client = _app(AuthMiddleware(FakeVerifier(), FakeCache(), None)).test_client()
    reply = client.get("/hello", headers={"Authorization": "Bearer token"})
    assert reply.status_code == 200
    assert reply.get_data(as_text=True) == "hello"


def test_install_reports_cache_failure():
    mw = AuthMiddleware(FakeVerifier(), FakeCache(get_error=RuntimeError("x")), None)
    reply = _app(mw).test_client().get("/hello", headers={"Authorization": "Bearer token"})
    assert reply.status_code == 500
    assert json.loads(reply.get_data())["messages"][0]["errcode"] == "DEFAULT_ERROR_CODE"


def test_redis_cache_default_expiration_and_round_trip():
    password = "password"
    cache = RedisTokenCache("localhost:6379", password=password, db=0, expiration=0)
    assert cache.expiration == auth.DEFAULT_EXPIRATION
    cache.client = FakeRedis()
    assert cache.get("token") is False
    cache.set("token")
    assert cache.get("token") is True
    assert cache.client.expiries["token"] == auth.DEFAULT_EXPIRATION


def test_redis_cache_explicit_expiration():
    password = "password"
    cache = RedisTokenCache("localhost:6379", password=password, db=1, expiration=45)
    assert cache.expiration.total_seconds() == 45


def test_oidc_verifier_rejects_malformed_token():
    verifier = OIDCVerifier("https://issuer.example.com", "client", "https://issuer.example.com/keys")
    with pytest.raises(ValueError):
        verifier.verify("token")