"""Status codes of the REST API and their mapping to HTTP responses."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Optional

from restgate.header import METADATA_PREFIX, CallContext, Metadata, header
from restgate.messages import new_response_error, new_with_fields, with_success

logger = logging.getLogger(__name__)


class Code(IntEnum):
    """Standard RPC codes plus the success codes of the REST API."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16
    # Success codes; never sent over the wire as part of an RPC status.
    CREATED = 10000
    UPDATED = 10001
    DELETED = 10002
    LONG_RUNNING = 10003
    PARTIAL_CONTENT = 10004


_STANDARD_NAMES: dict[int, str] = {
    0: "OK",
    1: "CANCELLED",
    2: "UNKNOWN",
    3: "INVALID_ARGUMENT",
    4: "DEADLINE_EXCEEDED",
    5: "NOT_FOUND",
    6: "ALREADY_EXISTS",
    7: "PERMISSION_DENIED",
    8: "RESOURCE_EXHAUSTED",
    9: "FAILED_PRECONDITION",
    10: "ABORTED",
    11: "OUT_OF_RANGE",
    12: "UNIMPLEMENTED",
    13: "INTERNAL",
    14: "UNAVAILABLE",
    15: "DATA_LOSS",
    16: "UNAUTHENTICATED",
}
_STANDARD_VALUES: dict[str, int] = {name: value for value, name in _STANDARD_NAMES.items()}

_CUSTOM_NAMES: dict[int, str] = {
    Code.UNIMPLEMENTED: "NOT_IMPLEMENTED",
    Code.CREATED: "CREATED",
    Code.UPDATED: "UPDATED",
    Code.DELETED: "DELETED",
    Code.LONG_RUNNING: "LONG_RUNNING_OP",
    Code.PARTIAL_CONTENT: "PARTIAL_CONTENT",
}
_CUSTOM_VALUES: dict[str, Code] = {name: Code(value) for value, name in _CUSTOM_NAMES.items()}

_HTTP_STATUS: dict[int, int] = {
    Code.CREATED: 201,
    Code.DELETED: 204,
    Code.LONG_RUNNING: 202,
    Code.PARTIAL_CONTENT: 206,
    Code.OK: 200,
    Code.CANCELLED: 499,
    Code.UNKNOWN: 500,
    Code.INVALID_ARGUMENT: 400,
    Code.DEADLINE_EXCEEDED: 504,
    Code.NOT_FOUND: 404,
    Code.ALREADY_EXISTS: 409,
    Code.PERMISSION_DENIED: 403,
    Code.UNAUTHENTICATED: 401,
    Code.RESOURCE_EXHAUSTED: 429,
    Code.FAILED_PRECONDITION: 400,
    Code.ABORTED: 409,
    Code.OUT_OF_RANGE: 400,
    Code.UNIMPLEMENTED: 501,
    Code.INTERNAL: 500,
    Code.UNAVAILABLE: 503,
    Code.DATA_LOSS: 500,
}

_METHOD_CODES: dict[str, Code] = {
    "POST": Code.CREATED,
    "PUT": Code.UPDATED,
    "PATCH": Code.UPDATED,
    "DELETE": Code.DELETED,
}


@dataclass
class GatewaySettings:
    """Process-wide switches that shape the HTTP responses."""

    old_status_created_on_update: bool = False
    status_from_method: bool = True
    status_details: bool = False


settings = GatewaySettings()


@dataclass
class Status:
    """An RPC status: a code, a message and optional detail messages."""

    code: int = Code.OK
    message: str = ""
    details: list[Any] = field(default_factory=list)


class StatusError(Exception):
    """An error that carries an RPC status."""

    def __init__(self, code: int, message: str, details=()) -> None:
        super().__init__(message)
        self.status = Status(code, message, list(details))

    @property
    def code(self) -> int:
        return self.status.code

    @property
    def message(self) -> str:
        return self.status.message

    def __str__(self) -> str:
        return self.status.message


def status_from_error(err: BaseException) -> Optional[Status]:
    """Return the status carried by err, or None if it carries none."""
    if isinstance(err, StatusError):
        return err.status
    return None


def include_status_details(with_details: bool) -> None:
    """Turn the code and status fields in JSON responses on or off."""
    settings.status_details = with_details


def set_status(ctx: CallContext, st: Optional[Status]) -> None:
    """Send the status code name as header metadata of the call."""
    if st is None:
        return
    ctx.set_header(Metadata.pairs(METADATA_PREFIX + "status-code", code_name(st.code)))


def set_created(ctx: CallContext, msg: str) -> None:
    """Mark the call as having created a resource, with a success message."""
    with_success(ctx, new_with_fields(msg))
    set_status(ctx, Status(Code.CREATED, msg))


def set_updated(ctx: CallContext, msg: str) -> None:
    """Mark the call as having updated a resource."""
    set_status(ctx, Status(Code.UPDATED, msg))


def set_deleted(ctx: CallContext, msg: str) -> None:
    """Mark the call as having deleted a resource."""
    set_status(ctx, Status(Code.DELETED, msg))


def set_running(ctx: CallContext, message: str, resource: str) -> None:
    """Mark the call as a long running operation found at resource."""
    ctx.set_header(Metadata.pairs("Location", resource))
    set_status(ctx, Status(Code.LONG_RUNNING, message))


def http_status(ctx: CallContext, st: Optional[Status]) -> tuple[int, str]:
    """Return the HTTP status code and code name for st, or for the call metadata."""
    if st is not None:
        return http_status_from_code(st.code), code_name(st.code)
    status_name = header(ctx, "status-code") or code_name(Code.OK)
    return http_status_from_code(code(status_name)), status_name


def http_status_with_method(
    ctx: CallContext, method: str, st: Optional[Status]
) -> tuple[int, str]:
    """Like http_status, but fall back on the HTTP method when no code was set."""
    if st is not None:
        return http_status_from_code(st.code), code_name(st.code)
    status_name = header(ctx, "status-code")
    if status_name is None:
        fallback = Code.OK
        if settings.status_from_method:
            fallback = _METHOD_CODES.get(method, Code.OK)
        status_name = code_name(fallback)
    return http_status_from_code(code(status_name)), status_name


def code_name(c: int) -> str:
    """Return the REST name of a code; unknown codes are named UNKNOWN."""
    c = int(c)
    if c in _CUSTOM_NAMES:
        return _CUSTOM_NAMES[c]
    return _STANDARD_NAMES.get(c, "UNKNOWN")


def code(cname: str) -> Code:
    """Return the code for an upper-case REST code name, or UNKNOWN."""
    if cname in _CUSTOM_VALUES:
        return _CUSTOM_VALUES[cname]
    value = _STANDARD_VALUES.get(cname)
    return Code.UNKNOWN if value is None else Code(value)


def http_status_from_code(c: int) -> int:
    """Convert a code into the corresponding HTTP response status."""
    if c == Code.UPDATED:
        return 201 if settings.old_status_created_on_update else 200
    status = _HTTP_STATUS.get(int(c))
    if status is None:
        logger.info("Unknown gRPC error code: %s", c)
        return 500
    return status


def new_response_error_with_code(ctx: CallContext, c: int, msg: str, *args: Any) -> StatusError:
    """Set the status code and an overriding error with fields; return the error."""
    set_status(ctx, Status(c, msg))
    new_response_error(ctx, msg, *args)
    return StatusError(c, msg)


def with_coded_success(ctx: CallContext, c: int, msg: str, *args: Any) -> None:
    """Store a success message with fields and set the status code."""
    with_success(ctx, new_with_fields(msg, *args))
    set_status(ctx, Status(c, msg))