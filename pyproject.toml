[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "alya"
version = "0.1.0"
description = "Building blocks for JSON web services on Flask: standard responses, validation helpers, OIDC auth and timeout middleware, and route groups"
requires-python = ">=3.10"
keywords = [
    "web-service",
    "flask",
    "wsgi",
    "middleware",
    "oidc",
    "validation",
    "json-api",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Framework :: Flask",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
]
dependencies = [
    "flask",
    "pyjwt",
    "redis",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["alya"]

[tool.hatch.build.targets.sdist]
include = [
    "alya",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
