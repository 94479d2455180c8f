"""Bearer-token authentication for Flask applications, backed by a token cache."""

from __future__ import annotations

import abc
import dataclasses
import enum
from datetime import timedelta
from typing import Any

import flask
import jwt
import redis

from .wscutils import Response, new_error_response

DEFAULT_EXPIRATION = timedelta(seconds=30)

_BEARER_PREFIX = "Bearer "
_FALLBACK_ERRCODE = "DEFAULT_ERROR_CODE"
_SIGNING_ALGORITHMS = ["RS256", "RS384", "RS512", "ES256", "ES384", "ES512", "PS256", "PS384", "PS512"]
_DEFAULT_REDIS_HOST = "localhost"
_DEFAULT_REDIS_PORT = 6379


class TokenCache(abc.ABC):
    """A store remembering tokens that have already been verified."""

    @abc.abstractmethod
    def get(self, token: str) -> bool:
        """Return whether the token is in the cache."""

    @abc.abstractmethod
    def set(self, token: str) -> None:
        """Remember the token."""


class RedisTokenCache(TokenCache):
    """A token cache kept in Redis, with entries that expire."""

    def __init__(
        self,
        addr: str,
        password: str | None,
        db: int,
        expiration: timedelta | float | None = None,
    ) -> None:
        host, sep, port = addr.rpartition(":")
        if not sep:
            host, port = addr, ""
        self.client = redis.Redis(
            host=host or _DEFAULT_REDIS_HOST,
            port=int(port) if port else _DEFAULT_REDIS_PORT,
            password=password or None,
            db=db,
        )
        if isinstance(expiration, (int, float)):
            expiration = timedelta(seconds=expiration)
        self.expiration = expiration if expiration else DEFAULT_EXPIRATION

    def set(self, token: str) -> None:
        self.client.set(token, "1", ex=self.expiration)

    def get(self, token: str) -> bool:
        return self.client.exists(token) > 0


class TokenVerifier(abc.ABC):
    """Checks that a raw ID token is genuine."""

    @abc.abstractmethod
    def verify(self, raw_token: str) -> dict[str, Any]:
        """Return the token's claims, or raise if it does not verify."""


class OIDCVerifier(TokenVerifier):
    """Verifies ID tokens signed with an OpenID provider's published keys."""

    def __init__(self, issuer: str, client_id: str, jwks_uri: str) -> None:
        self.issuer = issuer
        self.client_id = client_id
        self.jwks_uri = jwks_uri
        self._keys = jwt.PyJWKClient(jwks_uri)

    def verify(self, raw_token: str) -> dict[str, Any]:
        try:
            signing_key = self._keys.get_signing_key_from_jwt(raw_token)
            return jwt.decode(
                raw_token,
                signing_key.key,
                algorithms=_SIGNING_ALGORITHMS,
                audience=self.client_id,
                issuer=self.issuer,
                options={"require": ["exp"]},
            )
        except jwt.PyJWTError as exc:
            raise ValueError(f"token verification failed: {exc}") from exc


class AuthErrorScenario(str, enum.Enum):
    """The ways in which authentication of a request can fail."""

    TOKEN_MISSING = "TokenMissing"
    TOKEN_CACHE_FAILED = "TokenCacheFailed"
    TOKEN_VERIFICATION_FAILED = "TokenVerificationFailed"


@dataclasses.dataclass
class _Defaults:
    msgid: int = 0
    errcode: str = "ROUTER_ERROR"


_defaults = _Defaults()
_scenario_to_msgid: dict[AuthErrorScenario, int] = {}
_scenario_to_errcode: dict[AuthErrorScenario, str] = {}


def register_auth_msgid(scenario: AuthErrorScenario | str, msgid: int) -> None:
    """Set the message ID reported for an authentication failure."""
    _scenario_to_msgid[AuthErrorScenario(scenario)] = msgid


def register_auth_errcode(scenario: AuthErrorScenario | str, errcode: str) -> None:
    """Set the error code reported for an authentication failure."""
    _scenario_to_errcode[AuthErrorScenario(scenario)] = errcode


def set_default_msgid(msgid: int) -> None:
    """Set the message ID used where a failure has none registered."""
    _defaults.msgid = msgid


def set_default_errcode(errcode: str) -> None:
    """Set the error code used for a missing token without a registered one."""
    _defaults.errcode = errcode


def _error_response(scenario: AuthErrorScenario) -> Response:
    msgid = _scenario_to_msgid.get(scenario, _defaults.msgid)
    fallback = _defaults.errcode if scenario is AuthErrorScenario.TOKEN_MISSING else _FALLBACK_ERRCODE
    errcode = _scenario_to_errcode.get(scenario, fallback)
    return new_error_response(msgid, errcode)


class AuthError(Exception):
    """An authentication failure, with the HTTP status and response to send."""

    def __init__(self, scenario: AuthErrorScenario, status_code: int) -> None:
        super().__init__(scenario.value)
        self.scenario = scenario
        self.status_code = status_code
        self.response = _error_response(scenario)


def extract_token(header_value: str) -> str:
    """Return the token of a ``Bearer`` Authorization header value."""
    if not header_value.startswith(_BEARER_PREFIX):
        raise ValueError("missing or incorrect Authorization header format")
    token = header_value[len(_BEARER_PREFIX):]
    if not token:
        raise ValueError("missing token in Authorization header")
    return token


class AuthMiddleware:
    """Rejects requests whose bearer token is missing or does not verify."""

    def __init__(self, verifier: TokenVerifier, cache: TokenCache, logger: Any) -> None:
        self.verifier = verifier
        self.cache = cache
        self.logger = logger

    def check(self, authorization: str | None) -> str:
        """Authenticate an Authorization header value and return its token.

        Raises :class:`AuthError` when the request must be rejected.
        """
        try:
            token = extract_token(authorization or "")
        except ValueError as exc:
            raise AuthError(AuthErrorScenario.TOKEN_MISSING, 401) from exc

        try:
            cached = self.cache.get(token)
        except Exception as exc:
            raise AuthError(AuthErrorScenario.TOKEN_CACHE_FAILED, 500) from exc

        if not cached:
            try:
                self.verifier.verify(token)
            except Exception as exc:
                raise AuthError(AuthErrorScenario.TOKEN_VERIFICATION_FAILED, 401) from exc
            try:
                self.cache.set(token)
            except Exception as exc:
                raise AuthError(AuthErrorScenario.TOKEN_CACHE_FAILED, 500) from exc
        return token

    def install(self, app: flask.Flask) -> flask.Flask:
        """Check every request of the application before it is handled."""

        @app.before_request
        def _authenticate() -> flask.Response | None:
            try:
                self.check(flask.request.headers.get("Authorization", ""))
            except AuthError as err:
                return flask.Response(
                    err.response.to_json(),
                    status=err.status_code,
                    content_type="application/json; charset=utf-8",
                )
            return None

        return app