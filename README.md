# alya

Building blocks for JSON web services on Flask:

- **`alya.wscutils`** – the standard response envelope
  (`{"status": ..., "data": ..., "messages": [...]}`), error messages with
  configurable message IDs and error codes, dataclass validation and JSON
  binding.
- **`alya.validations`** – validators for Indian PIN codes, Aadhaar and PAN
  numbers, file extensions and dates of birth.
- **`alya.auth`** – bearer-token authentication of Flask requests against an
  OpenID provider, with a Redis-backed cache of tokens already verified.
- **`alya.middleware`** – a WSGI timeout middleware answering
  `504 Gateway Timeout`, and a request logger.
- **`alya.routing`** – builds a Flask application with the middleware wired
  in, and loads the auth middleware from a provider's discovery document.
- **`alya.service`** – a `Service` object carrying a router and its
  dependencies, with route groups and sub-groups.

## Installation

```
pip install alya
```

Python 3.10 or later is required. Verifying RS/ES/PS-signed tokens with
`OIDCVerifier` needs the `cryptography` package installed alongside PyJWT.

## Standard responses

```python
from alya.wscutils import new_success_response, new_error_response

new_success_response("test data").to_json()
# '{"status":"success","data":"test data","messages":null}'

new_error_response(1001, "invalid_json").to_json()
# '{"status":"error","data":null,"messages":[{"msgid":1001,"errcode":"invalid_json"}]}'
```

`build_error_message(msgid, errcode, field_name, *vals)` builds a single
`ErrorMessage`; `field` and `vals` are left out of its dictionary form when
empty. `send_success_response(response)` and `send_error_response(response)`
render a `Response` as a Flask response with status 200 and 400.
`get_request_user(values)` returns the `"RequestUser"` string of a mapping,
raising `LookupError` when it is missing and `TypeError` when it is not a
string.

Message IDs and error codes for validation failures and invalid JSON are set
once at start-up:

```python
from alya import wscutils

wscutils.set_default_msgid(9999)
wscutils.set_default_errcode("default_error")
wscutils.set_msgid_invalid_json(1001)
wscutils.set_errcode_invalid_json("invalid_json")
wscutils.set_validation_tag_to_msgid_map({"required": 1001, "email": 1002})
wscutils.set_validation_tag_to_errcode_map({"required": "required", "email": "email"})
```

## Validation and binding

Rules are declared on dataclass fields with `rule(...)`. The supported tags are
`required`, `email`, `min`, `max`, `len`, `gt`, `gte`, `lt`, `lte`, `eq`, `ne`,
`oneof`, `alpha`, `alphanum`, `numeric` and `omitempty`.

```python
from dataclasses import dataclass
from alya.wscutils import rule, wsc_validate, bind_json, InvalidJSONError

@dataclass
class User:
    Name: str = rule("required", default="")
    Email: str = rule("required,email", default="")
    Age: int = rule("min=18,max=150", default=0)

errors = wsc_validate(User(Email="john@example.com", Age=20), lambda err: [err.field])
# [ErrorMessage(msgid=1001, errcode='required', field='Name', vals=['Name'])]

user = bind_json('{"data": {"Name": "John Doe"}}', User)

try:
    bind_json('{"data": }', User)
except InvalidJSONError as exc:
    exc.status_code, exc.response.to_json()
```

`wsc_validate` reports the first failing rule of each field, as a `FieldError`
passed to `get_vals`, and recurses into nested dataclasses.

## Validators

```python
from alya.validations import is_valid_india_zip, is_file_type_allowed, is_valid_date_of_birth

is_valid_india_zip("411001")                                 # True
is_file_type_allowed("report.docx", ["doc", "docx", "png"])  # True
is_file_type_allowed("report.txt", ["doc", "docx", "png"])   # False
is_valid_date_of_birth("1990-10-10", 18, 65)                 # True
is_valid_date_of_birth("2005-01-01", None, 15)               # False
```

`calculate_age(birth_date)` gives the age in whole years as of today in UTC.
`is_valid_aadhaar_number` and `is_valid_pan_number` check the shape of those
identifiers.

## Authentication

`AuthMiddleware.check(authorization)` extracts the `Bearer` token, consults
the `TokenCache`, and verifies unknown tokens with a `TokenVerifier` before
caching them. Failures raise `AuthError` carrying the standard error response:
`401` when the token is missing or does not verify, `500` when the cache
fails. `AuthMiddleware.install(app)` runs the check before every request of a
Flask application.

```python
from alya.auth import RedisTokenCache, AuthErrorScenario, register_auth_msgid, extract_token
from alya.routing import load_auth_middleware, setup_router

password = "password"
cache = RedisTokenCache("localhost:6379", password, 0, 30)

auth = load_auth_middleware("my-client", "https://id.example.com/realms/demo", cache, None)
app = setup_router(True, None, auth)

register_auth_msgid(AuthErrorScenario.TOKEN_MISSING, 1201)

extract_token("Bearer token")   # "token"
```

A cache expiration of `0` or `None` falls back to 30 seconds. Message IDs and
error codes per failure are set with `register_auth_msgid`,
`register_auth_errcode`, `set_default_msgid` and `set_default_errcode`.

## Middleware and routing

`setup_router(use_oidc_auth, logger, auth_middleware)` returns a Flask
application that logs each request through `logger.info` and answers `504`
when a request runs past 60 seconds. `TimeoutMiddleware(app, timeout)` and
`request_logger(app, logger)` can also be applied on their own; the timeout
response uses codes set with `register_middleware_msgid` and
`register_middleware_errcode`.

`AppRouter().serve("host:port")` runs a logging Flask application on Flask's
development server.

## Services and route groups

Handlers registered through a `Service` are called as
`handler(service, **path_params)`; path parameters may be written `:name` or
`*name`.

```python
from alya.routing import setup_router
from alya.service import Service

app = setup_router(False, None, None)
svc = Service(app).with_dependency("greeting", "hello")

def hello(service):
    return {"message": service.dependencies["greeting"]}

svc.register_route("GET", "/hello", hello)

v1 = svc.create_group("/v1")
users = v1.create_sub_group("/users")
svc.register_route_with_group(users, "GET", "/:id", lambda service, id: {"id": id})
```

Views registered directly on a `RouteGroup` with `register_route` are plain
Flask views. Only `GET`, `POST`, `PUT` and `DELETE` are accepted; any other
method is logged and the route is not registered.

## What this package does not do

It provides no command-line program and no production server: serve the
application with any WSGI server, or use `AppRouter.serve` for development.
It holds no configuration loading and no database layer; a `Service` only
stores what is injected into it.

## Running the tests

```
pip install "alya[test]"
pytest
```