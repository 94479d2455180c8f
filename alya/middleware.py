"""Request timeout and request logging middleware."""

from __future__ import annotations

import dataclasses
import enum
import threading
import time
from collections.abc import Callable, Iterable
from datetime import timedelta
from typing import Any

import flask

from . import auth as _auth
from .wscutils import new_error_response

_START_KEY = "_alya_request_start"
DEADLINE_KEY = "alya.deadline"


class MiddlewareErrorScenario(str, enum.Enum):
    """The ways in which middleware can fail a request."""

    REQUEST_TIMEOUT = "RequestTimeout"


_scenario_to_msgid: dict[MiddlewareErrorScenario, int] = {}
_scenario_to_errcode: dict[MiddlewareErrorScenario, str] = {}


def register_middleware_msgid(scenario: MiddlewareErrorScenario | str, msgid: int) -> None:
    """Set the message ID reported for a middleware failure."""
    _scenario_to_msgid[MiddlewareErrorScenario(scenario)] = msgid


def register_middleware_errcode(scenario: MiddlewareErrorScenario | str, errcode: str) -> None:
    """Set the error code reported for a middleware failure."""
    _scenario_to_errcode[MiddlewareErrorScenario(scenario)] = errcode


def _seconds(timeout: timedelta | float) -> float:
    if isinstance(timeout, timedelta):
        return timeout.total_seconds()
    return float(timeout)


@dataclasses.dataclass
class _Outcome:
    status: str = ""
    headers: list[tuple[str, str]] = dataclasses.field(default_factory=list)
    exc_info: Any = None
    body: list[bytes] = dataclasses.field(default_factory=list)
    error: BaseException | None = None


class TimeoutMiddleware:
    """WSGI middleware answering 504 when the wrapped application is too slow."""

    def __init__(self, app: Callable[..., Iterable[bytes]], timeout: timedelta | float) -> None:
        self.app = app
        self.timeout = _seconds(timeout)

    def _run(self, environ: dict[str, Any], outcome: _Outcome, done: threading.Event) -> None:
        def capture(status: str, headers: list[tuple[str, str]], exc_info: Any = None):
            outcome.status = status
            outcome.headers = list(headers)
            outcome.exc_info = exc_info
            return outcome.body.append

        try:
            result = self.app(environ, capture)
            try:
                outcome.body.extend(result)
            finally:
                close = getattr(result, "close", None)
                if close is not None:
                    close()
        except BaseException as exc:
            outcome.error = exc
        finally:
            done.set()

    def __call__(self, environ: dict[str, Any], start_response: Callable[..., Any]) -> Iterable[bytes]:
        environ[DEADLINE_KEY] = time.monotonic() + self.timeout
        outcome = _Outcome()
        done = threading.Event()
        threading.Thread(target=self._run, args=(environ, outcome, done), daemon=True).start()

        if not done.wait(self.timeout):
            scenario = MiddlewareErrorScenario.REQUEST_TIMEOUT
            msgid = _scenario_to_msgid.get(scenario, _auth._defaults.msgid)
            errcode = _scenario_to_errcode.get(scenario, _auth._defaults.errcode)
            body = new_error_response(msgid, errcode).to_json().encode("utf-8")
            start_response(
                "504 Gateway Timeout",
                [
                    ("Content-Type", "application/json; charset=utf-8"),
                    ("Content-Length", str(len(body))),
                ],
            )
            return [body]

        if outcome.error is not None:
            raise outcome.error
        if outcome.exc_info is not None:
            start_response(outcome.status, outcome.headers, outcome.exc_info)
        else:
            start_response(outcome.status, outcome.headers)
        return outcome.body


def _trim(value: float) -> str:
    return f"{value:.9f}".rstrip("0").rstrip(".")


def _format_duration(seconds: float) -> str:
    ns = round(seconds * 1_000_000_000)
    if ns < 1_000:
        return f"{ns}ns"
    if ns < 1_000_000:
        return _trim(ns / 1_000) + "µs"
    if ns < 1_000_000_000:
        return _trim(ns / 1_000_000) + "ms"
    if ns < 60_000_000_000:
        return _trim(ns / 1_000_000_000) + "s"
    minutes, rest = divmod(ns, 60_000_000_000)
    hours, minutes = divmod(minutes, 60)
    text = f"{minutes}m{_trim(rest / 1_000_000_000)}s"
    return f"{hours}h{text}" if hours else text


def request_logger(app: flask.Flask, logger: Any) -> flask.Flask:
    """Log method, path, status and latency of every request through ``logger.info``."""

    @app.before_request
    def _start_timer() -> None:
        setattr(flask.g, _START_KEY, time.perf_counter())

    @app.after_request
    def _log_request(response: flask.Response) -> flask.Response:
        start = flask.g.get(_START_KEY)
        latency = 0.0 if start is None else time.perf_counter() - start
        logger.info(
            f"Method: {flask.request.method}, Path: {flask.request.path}, "
            f"Status: {response.status_code}, Latency: {_format_duration(latency)}"
        )
        return response

    return app