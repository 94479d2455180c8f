"""Building blocks for JSON web services on Flask: responses, validation, auth, middleware and routing."""

__version__ = "0.1.0"

__all__ = ["auth", "middleware", "routing", "service", "validations", "wscutils"]