"""Application setup: router construction and OIDC auth middleware loading."""

from __future__ import annotations

import logging
import os
from datetime import timedelta
from typing import Any

import flask
import requests

from .auth import AuthMiddleware, OIDCVerifier, TokenCache
from .middleware import TimeoutMiddleware, request_logger

REQUEST_TIMEOUT = timedelta(seconds=60)
PROVIDER_TIMEOUT = timedelta(seconds=5)

_DEFAULT_PORT = "8080"
_ALL_INTERFACES = "0.0.0.0"
_DISCOVERY_PATH = "/.well-known/openid-configuration"

_log = logging.getLogger("alya.router")


def _split_address(address: str) -> tuple[str, int]:
    if not address:
        address = ":" + os.environ.get("PORT", _DEFAULT_PORT)
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address {address!r}")
    return host or _ALL_INTERFACES, int(port)


class AppRouter:
    """A Flask application with request logging attached."""

    def __init__(self) -> None:
        self.app = flask.Flask("alya")
        request_logger(self.app, _log)

    def serve(self, address: str = "") -> None:
        """Serve the application at a ``host:port`` address."""
        host, port = _split_address(address)
        self.app.run(host=host, port=port)


def setup_router(
    use_oidc_auth: bool, logger: Any, auth_middleware: AuthMiddleware | None
) -> flask.Flask:
    """Create an application with request logging, a request timeout and optional auth."""
    app = flask.Flask("alya")
    request_logger(app, logger if logger is not None else _log)
    if use_oidc_auth:
        if auth_middleware is None:
            raise ValueError("OIDC authentication requested without an auth middleware")
        auth_middleware.install(app)
    app.wsgi_app = TimeoutMiddleware(app.wsgi_app, REQUEST_TIMEOUT)
    return app


def load_auth_middleware(
    client_id: str, provider_url: str, cache: TokenCache, logger: Any
) -> AuthMiddleware:
    """Discover an OpenID provider and build an auth middleware verifying its tokens."""
    discovery_url = provider_url.rstrip("/") + _DISCOVERY_PATH
    reply = requests.get(discovery_url, timeout=PROVIDER_TIMEOUT.total_seconds())
    reply.raise_for_status()
    document = reply.json()
    issuer = document.get("issuer")
    if issuer != provider_url:
        raise ValueError(
            f"issuer did not match the issuer returned by provider, "
            f"expected {provider_url!r} got {issuer!r}"
        )
    jwks_uri = document.get("jwks_uri")
    if not jwks_uri:
        raise ValueError("provider configuration has no jwks_uri")
    return AuthMiddleware(OIDCVerifier(issuer, client_id, jwks_uri), cache, logger)