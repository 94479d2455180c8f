"""Web service container: dependency injection and route registration on a Flask app."""

from __future__ import annotations

import dataclasses
import logging
import posixpath
from collections.abc import Callable
from typing import Any

import flask

_SUPPORTED_METHODS = frozenset({"GET", "POST", "PUT", "DELETE"})

_log = logging.getLogger("alya.service")

Dependencies = dict[str, Any]
HandlerFunc = Callable[..., Any]


def _join_paths(base: str, relative: str) -> str:
    if not relative:
        return base or "/"
    joined = posixpath.normpath("/" + (base + "/" + relative).strip("/"))
    if relative.endswith("/") and not joined.endswith("/"):
        joined += "/"
    return joined


def _flask_rule(path: str) -> str:
    segments = []
    for segment in path.split("/"):
        if segment.startswith(":") and len(segment) > 1:
            segment = f"<{segment[1:]}>"
        elif segment.startswith("*") and len(segment) > 1:
            segment = f"<path:{segment[1:]}>"
        segments.append(segment)
    return "/".join(segments)


def _add_route(app: flask.Flask, method: str, path: str, view: Callable[..., Any]) -> bool:
    if method not in _SUPPORTED_METHODS:
        _log.warning("Unsupported method: %s", method)
        return False
    rule = _flask_rule(path)
    app.add_url_rule(rule, endpoint=f"{method} {rule}", view_func=view, methods=[method])
    return True


class RouteGroup:
    """A set of routes sharing a path prefix."""

    def __init__(self, app: flask.Flask, prefix: str) -> None:
        self.app = app
        self.prefix = _join_paths("/", prefix)

    def register_route(self, method: str, path: str, handler: Callable[..., Any]) -> None:
        """Register a view under this group's prefix; unsupported methods are logged and skipped."""
        _add_route(self.app, method, _join_paths(self.prefix, path), handler)

    def create_sub_group(self, path: str) -> RouteGroup:
        """Create a group nested under this one."""
        return RouteGroup(self.app, _join_paths(self.prefix, path))


@dataclasses.dataclass(eq=False)
class Service:
    """A web service holding its router and injected dependencies.

    Handlers registered through the service are called as
    ``handler(service, **path_params)``.
    """

    router: flask.Flask | None
    config: Any = None
    logger: Any = None
    database: Any = None
    dependencies: Dependencies = dataclasses.field(default_factory=dict)

    def with_config(self, config: Any) -> Service:
        """Inject a configuration source."""
        self.config = config
        return self

    def with_dependency(self, key: str, value: Any) -> Service:
        """Inject an arbitrary dependency under a key."""
        self.dependencies[key] = value
        return self

    def with_logger(self, logger: Any) -> Service:
        """Inject a logger."""
        self.logger = logger
        return self

    def with_database(self, db: Any) -> Service:
        """Inject a database handle."""
        self.database = db
        return self

    def _wrap(self, handler: HandlerFunc) -> Callable[..., Any]:
        def view(**params: Any) -> Any:
            return handler(self, **params)

        view.__name__ = getattr(handler, "__name__", "view")
        return view

    def _app(self) -> flask.Flask:
        if self.router is None:
            raise ValueError("service has no router")
        return self.router

    def register_route(self, method: str, path: str, handler: HandlerFunc) -> None:
        """Register a route on the service's router; unsupported methods are logged and skipped."""
        _add_route(self._app(), method, _join_paths("/", path), self._wrap(handler))

    def create_group(self, path: str) -> RouteGroup:
        """Create a route group with the given path prefix."""
        return RouteGroup(self._app(), path)

    def register_route_with_group(
        self, group: RouteGroup, method: str, path: str, handler: HandlerFunc
    ) -> None:
        """Register a service handler within a route group."""
        _add_route(group.app, method, _join_paths(group.prefix, path), self._wrap(handler))