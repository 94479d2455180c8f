"""Standard request/response envelopes, struct validation and error helpers."""

from __future__ import annotations

import dataclasses
import json
import operator
import re
import types
import typing
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Union

import flask

ERROR_STATUS = "error"
SUCCESS_STATUS = "success"

ERRCODE_UNKNOWN = "unknown"
ERRCODE_INVALID_REQUEST = "invalid_request"
ERRCODE_INVALID_JSON = "invalid_json"
ERRCODE_DATABASE_ERROR = "database_error"
ERRCODE_REQUEST_USER_INVALID = "request_user_invalid"
ERRCODE_MISSING = "missing"
ERRCODE_TOKEN_MISSING = "token_missing"
ERRCODE_TOKEN_VERIFICATION_FAILED = "token_verification_failed"
ERRCODE_TOKEN_CACHE_FAILED = "token_cache_failed"

_RULE_KEY = "alya.validate"
_ALIAS_KEY = "alya.alias"
_JSON_KEY = "json"
_NONE_TYPE = type(None)


@dataclass
class ErrorMessage:
    """One entry of the ``messages`` list of a response."""

    msgid: int
    errcode: str
    field: str = ""
    vals: list[str] = dataclasses.field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"msgid": self.msgid, "errcode": self.errcode}
        if self.field:
            result["field"] = self.field
        if self.vals:
            result["vals"] = list(self.vals)
        return result


@dataclass
class Response:
    """The standard response envelope of a web service."""

    status: str
    data: Any = None
    messages: list[ErrorMessage] | None = None

    def to_dict(self) -> dict[str, Any]:
        data = self.data
        if dataclasses.is_dataclass(data) and not isinstance(data, type):
            data = dataclasses.asdict(data)
        messages = None if self.messages is None else [m.to_dict() for m in self.messages]
        return {"status": self.status, "data": data, "messages": messages}

    def to_json(self) -> str:
        text = json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)
        return (
            text.replace("<", "\\u003c")
            .replace(">", "\\u003e")
            .replace("&", "\\u0026")
            .replace("\u2028", "\\u2028")
            .replace("\u2029", "\\u2029")
        )


@dataclass(frozen=True)
class FieldError:
    """A single failed validation rule on a field."""

    field: str
    tag: str
    param: str
    value: Any


class InvalidJSONError(ValueError):
    """Raised when a request body cannot be bound; carries the error response."""

    def __init__(self, response: Response, status_code: int = 400) -> None:
        super().__init__("invalid JSON request body")
        self.response = response
        self.status_code = status_code


@dataclass
class _Settings:
    tag_to_msgid: dict[str, int] = dataclasses.field(default_factory=dict)
    tag_to_errcode: dict[str, str] = dataclasses.field(default_factory=dict)
    default_msgid: int = 0
    default_errcode: str = ""
    msgid_invalid_json: int = 0
    errcode_invalid_json: str = ""


_settings = _Settings()


def set_validation_tag_to_msgid_map(custom_map: Mapping[str, int]) -> None:
    """Set the message IDs reported for each validation tag."""
    _settings.tag_to_msgid = dict(custom_map)


def set_validation_tag_to_errcode_map(custom_map: Mapping[str, str]) -> None:
    """Set the error codes reported for each validation tag."""
    _settings.tag_to_errcode = dict(custom_map)


def set_default_msgid(msgid: int) -> None:
    """Set the message ID used for tags without a registered one."""
    _settings.default_msgid = msgid


def set_default_errcode(errcode: str) -> None:
    """Set the error code used for tags without a registered one."""
    _settings.default_errcode = errcode


def set_msgid_invalid_json(msgid: int) -> None:
    """Set the message ID reported for unbindable request bodies."""
    _settings.msgid_invalid_json = msgid


def set_errcode_invalid_json(errcode: str) -> None:
    """Set the error code reported for unbindable request bodies."""
    _settings.errcode_invalid_json = errcode


# --- validation rules -------------------------------------------------------

_EMAIL_RE = re.compile(
    r"[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*"
)
_ALPHA_RE = re.compile(r"[a-zA-Z]+")
_ALPHANUM_RE = re.compile(r"[a-zA-Z0-9]+")
_NUMERIC_RE = re.compile(r"[-+]?[0-9]+(?:\.[0-9]+)?")


def _is_zero(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (bool, int, float, complex)):
        return not value
    try:
        return len(value) == 0
    except TypeError:
        return False


def _size(value: Any) -> float:
    if isinstance(value, (bool, int, float)):
        return value
    try:
        return len(value)
    except TypeError:
        raise TypeError(f"cannot measure a value of type {type(value).__name__}") from None


def _number(param: str) -> float:
    try:
        return float(param)
    except ValueError:
        raise ValueError(f"rule parameter {param!r} is not a number") from None


def _compare(op: Callable[[float, float], bool]) -> Callable[[Any, str], bool]:
    def check(value: Any, param: str) -> bool:
        return op(_size(value), _number(param))

    return check


def _equality(op: Callable[[Any, Any], bool]) -> Callable[[Any, str], bool]:
    def check(value: Any, param: str) -> bool:
        if isinstance(value, str):
            return op(value, param)
        return op(_size(value), _number(param))

    return check


def _pattern(regex: re.Pattern[str]) -> Callable[[Any, str], bool]:
    def check(value: Any, param: str) -> bool:
        return regex.fullmatch(str(value)) is not None

    return check


_CHECKS: dict[str, Callable[[Any, str], bool]] = {
    "required": lambda value, param: not _is_zero(value),
    "email": lambda value, param: isinstance(value, str) and _EMAIL_RE.fullmatch(value) is not None,
    "min": _compare(operator.ge),
    "max": _compare(operator.le),
    "len": _compare(operator.eq),
    "gt": _compare(operator.gt),
    "gte": _compare(operator.ge),
    "lt": _compare(operator.lt),
    "lte": _compare(operator.le),
    "eq": _equality(operator.eq),
    "ne": _equality(operator.ne),
    "oneof": lambda value, param: str(value) in param.split(),
    "alpha": _pattern(_ALPHA_RE),
    "alphanum": _pattern(_ALPHANUM_RE),
    "numeric": _pattern(_NUMERIC_RE),
}


def _parse_rules(spec: str) -> list[tuple[str, str]]:
    rules = []
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        tag, _, param = part.partition("=")
        if tag != "omitempty" and tag not in _CHECKS:
            raise ValueError(f"undefined validation tag {tag!r}")
        rules.append((tag, param))
    return rules


def rule(spec: str, **kwargs: Any) -> Any:
    """Declare a dataclass field carrying validation rules such as ``"required,email"``.

    The keyword ``alias`` sets the field name reported in errors; the other
    keywords go to :func:`dataclasses.field`.
    """
    alias = kwargs.pop("alias", None)
    _parse_rules(spec)
    metadata = dict(kwargs.pop("metadata", None) or {})
    metadata[_RULE_KEY] = spec
    if alias:
        metadata[_ALIAS_KEY] = alias
    return dataclasses.field(metadata=metadata, **kwargs)


def _first_failure(name: str, value: Any, spec: str) -> FieldError | None:
    rules = _parse_rules(spec)
    if any(tag == "omitempty" for tag, _ in rules) and _is_zero(value):
        return None
    for tag, param in rules:
        if tag == "omitempty":
            continue
        if not _CHECKS[tag](value, param):
            return FieldError(field=name, tag=tag, param=param, value=value)
    return None


def _field_errors(obj: Any) -> Iterator[FieldError]:
    for f in dataclasses.fields(obj):
        value = getattr(obj, f.name)
        spec = f.metadata.get(_RULE_KEY)
        if spec:
            failure = _first_failure(f.metadata.get(_ALIAS_KEY, f.name), value, spec)
            if failure is not None:
                yield failure
                continue
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            yield from _field_errors(value)


def wsc_validate(data: Any, get_vals: Callable[[FieldError], list[str]]) -> list[ErrorMessage]:
    """Check a dataclass instance against its field rules and return the error messages."""
    if not dataclasses.is_dataclass(data) or isinstance(data, type):
        raise TypeError("wsc_validate expects a dataclass instance")
    messages = []
    for err in _field_errors(data):
        msgid = _settings.tag_to_msgid.get(err.tag, _settings.default_msgid)
        errcode = _settings.tag_to_errcode.get(err.tag, _settings.default_errcode)
        messages.append(build_error_message(msgid, errcode, err.field, *get_vals(err)))
    return messages


# --- response helpers -------------------------------------------------------


def build_error_message(msgid: int, errcode: str, field_name: str, *args: str) -> ErrorMessage:
    """Build an :class:`ErrorMessage`; extra arguments become its ``vals``."""
    return ErrorMessage(msgid=msgid, errcode=errcode, field=field_name, vals=list(args))


def new_response(status: str, data: Any, messages: list[ErrorMessage] | None) -> Response:
    """Create a response envelope."""
    return Response(status=status, data=data, messages=None if messages is None else list(messages))


def new_error_response(msgid: int, errcode: str) -> Response:
    """Create an error response holding a single message."""
    return new_response(ERROR_STATUS, None, [build_error_message(msgid, errcode, "")])


def new_success_response(data: Any) -> Response:
    """Create a success response with no messages."""
    return new_response(SUCCESS_STATUS, data, None)


def _json_response(response: Response, status: int) -> flask.Response:
    return flask.Response(
        response.to_json(), status=status, content_type="application/json; charset=utf-8"
    )


def send_success_response(response: Response) -> flask.Response:
    """Render a response as JSON with status 200."""
    return _json_response(response, 200)


def send_error_response(response: Response) -> flask.Response:
    """Render a response as JSON with status 400."""
    return _json_response(response, 400)


def get_request_user(values: Mapping[str, Any]) -> str:
    """Return the ``RequestUser`` entry of a request's values."""
    try:
        user = values["RequestUser"]
    except KeyError:
        raise LookupError("missing_request_user") from None
    if not isinstance(user, str):
        raise TypeError("invalid_request_user")
    return user


# --- binding ----------------------------------------------------------------


def _allows_none(hint: Any) -> bool:
    if hint is Any or hint is object:
        return True
    origin = typing.get_origin(hint)
    return (origin is Union or origin is types.UnionType) and _NONE_TYPE in typing.get_args(hint)


def _type_hints(cls: type) -> dict[str, Any]:
    # Annotations left as strings are bound without type conversion.
    return {f.name: f.type for f in dataclasses.fields(cls) if not isinstance(f.type, str)}


def _convert_dataclass(value: Any, cls: type) -> Any:
    if not isinstance(value, dict):
        raise TypeError(f"expected an object for {cls.__name__}")
    hints = _type_hints(cls)
    kwargs = {}
    for f in dataclasses.fields(cls):
        if not f.init:
            continue
        key = f.metadata.get(_JSON_KEY, f.name)
        if key not in value:
            continue
        raw = value[key]
        hint = hints.get(f.name, Any)
        if raw is None and not _allows_none(hint):
            continue
        kwargs[f.name] = _convert(raw, hint)
    return cls(**kwargs)


def _expect(ok: bool, hint: Any, value: Any) -> None:
    if not ok:
        raise TypeError(f"cannot bind {type(value).__name__} to {getattr(hint, '__name__', hint)}")


def _convert(value: Any, hint: Any) -> Any:
    if hint is Any or hint is object:
        return value
    origin = typing.get_origin(hint)
    if origin is Union or origin is types.UnionType:
        args = typing.get_args(hint)
        if value is None:
            _expect(_NONE_TYPE in args, hint, value)
            return None
        for arg in args:
            if arg is _NONE_TYPE:
                continue
            try:
                return _convert(value, arg)
            except TypeError:
                continue
        raise TypeError(f"cannot bind {type(value).__name__} to {hint}")
    if isinstance(hint, type) and dataclasses.is_dataclass(hint):
        return _convert_dataclass(value, hint)
    if hint is bool:
        _expect(isinstance(value, bool), hint, value)
        return value
    if hint is int:
        _expect(isinstance(value, int) and not isinstance(value, bool), hint, value)
        return value
    if hint is float:
        _expect(isinstance(value, (int, float)) and not isinstance(value, bool), hint, value)
        return float(value)
    if hint is str:
        _expect(isinstance(value, str), hint, value)
        return value
    if hint is list or origin is list:
        _expect(isinstance(value, list), hint, value)
        args = typing.get_args(hint)
        item = args[0] if args else Any
        return [_convert(v, item) for v in value]
    if hint is dict or origin is dict:
        _expect(isinstance(value, dict), hint, value)
        args = typing.get_args(hint)
        item = args[1] if len(args) == 2 else Any
        return {k: _convert(v, item) for k, v in value.items()}
    return value


def bind_json(body: str | bytes, data_type: Any) -> Any:
    """Parse a ``{"data": ...}`` request body and bind its data to ``data_type``.

    Raises :class:`InvalidJSONError` carrying a 400 error response on failure.
    """
    try:
        payload = json.loads(body)
        if not isinstance(payload, dict) or payload.get("data") is None:
            raise ValueError('request body must carry a "data" member')
        return _convert(payload["data"], data_type)
    except (ValueError, TypeError) as exc:
        message = build_error_message(
            _settings.msgid_invalid_json, _settings.errcode_invalid_json, ""
        )
        raise InvalidJSONError(new_response(ERROR_STATUS, None, [message])) from exc