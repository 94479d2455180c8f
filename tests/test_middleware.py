import json
import re
import time
from datetime import timedelta

import flask
import pytest

from alya import auth, middleware
from alya.middleware import (
    MiddlewareErrorScenario,
    TimeoutMiddleware,
    register_middleware_errcode,
    register_middleware_msgid,
    request_logger,
)


@pytest.fixture(autouse=True)
def fresh_registry(monkeypatch):
    monkeypatch.setattr(middleware, "_scenario_to_msgid", {})
    monkeypatch.setattr(middleware, "_scenario_to_errcode", {})
    monkeypatch.setattr(auth, "_defaults", auth._Defaults())


class ListLogger:
    def __init__(self):
        self.messages = []

    def info(self, message):
        self.messages.append(message)


def _timed_app(timeout):
    app = flask.Flask(__name__)

    @app.route("/fast")
    def fast():
        return "pong"

    @app.route("/slow")
    def slow():
        time.sleep(0.5)
        return "late"

    app.wsgi_app = TimeoutMiddleware(app.wsgi_app, timeout)
    return app


def test_fast_request_passes_through():
    reply = _timed_app(2.0).test_client().get("/fast")
    assert reply.status_code == 200
    assert reply.get_data(as_text=True) == "pong"


def test_slow_request_times_out_with_default_codes():
    reply = _timed_app(0.05).test_client().get("/slow")
    assert reply.status_code == 504
    assert json.loads(reply.get_data()) == {
        "status": "error",
        "data": None,
        "messages": [{"msgid": 0, "errcode": "ROUTER_ERROR"}],
    }


def test_slow_request_uses_registered_codes():
    register_middleware_msgid(MiddlewareErrorScenario.REQUEST_TIMEOUT, 4242)
    register_middleware_errcode("RequestTimeout", "request_timeout")
    reply = _timed_app(0.05).test_client().get("/slow")
    message = json.loads(reply.get_data())["messages"][0]
    assert message == {"msgid": 4242, "errcode": "request_timeout"}


def test_timeout_accepts_timedelta():
    assert TimeoutMiddleware(lambda e, s: [], timedelta(seconds=2)).timeout == 2.0


def test_application_error_is_raised():
    def failing(environ, start_response):
        raise RuntimeError("boom")

    mw = TimeoutMiddleware(failing, 1.0)
    with pytest.raises(RuntimeError, match="boom"):
        mw({}, lambda status, headers, exc_info=None: None)


def test_wrapped_application_sees_deadline():
    seen = {}

    def app(environ, start_response):
        seen.update(environ)
        start_response("200 OK", [("Content-Type", "text/plain")])
        return [b"ok"]

    statuses = []
    before = time.monotonic()
    body = TimeoutMiddleware(app, 1.0)({}, lambda status, headers: statuses.append(status))
    assert list(body) == [b"ok"]
    assert statuses == ["200 OK"]
    assert seen[middleware.DEADLINE_KEY] >= before + 1.0


def test_request_logger_records_each_request():
    logger = ListLogger()
    app = flask.Flask(__name__)
    request_logger(app, logger)

    @app.route("/items", methods=["POST"])
    def create():
        return "", 201

    app.test_client().post("/items")
    assert len(logger.messages) == 1
    assert logger.messages[0].startswith("Method: POST, Path: /items, Status: 201, Latency: ")
    assert re.search(r"Latency: [0-9.]+(ns|µs|ms|s)$", logger.messages[0])