"""REST gateway helpers: status mapping, JSON error and success envelopes, field selection and field masks."""

__version__ = "0.1.0"

__all__ = [
    "header",
    "messages",
    "operator",
    "status",
    "middleware",
    "errors",
    "fields",
    "field_presence",
    "response",
]