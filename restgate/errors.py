"""Error responses of the REST API, written as JSON."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from restgate.header import (
    CallContext,
    HeaderMatcher,
    Request,
    ResponseWriter,
    forward_response_server_metadata,
    forward_response_trailer,
    forward_response_trailer_header,
    prefix_outgoing_header_matcher,
)
from restgate.messages import errors_and_success_from_context
from restgate.status import Code, Status, http_status_with_method, settings, status_from_error

logger = logging.getLogger(__name__)

_FALLBACK = '{"error":[{"message":"%s"}]}'
_FALLBACK_WITH_STATUS = '{"error":[{"message":"%s", "code":500, "status": "INTERNAL"}]}'


@dataclass
class TargetInfo:
    """A detail of an error: a code, a message and the target it concerns."""

    code: int = Code.OK
    message: str = ""
    target: str = ""


@dataclass
class FieldInfo:
    """Messages about individual request fields, keyed by field name."""

    fields: dict[str, list[str]] = field(default_factory=dict)


def _code_label(value: int) -> str:
    try:
        return Code(int(value)).name
    except ValueError:
        return "UNKNOWN"


def _jsonable(value: Any) -> Any:
    if isinstance(value, TargetInfo):
        return {
            "code": _code_label(value.code),
            "message": value.message,
            "target": value.target,
        }
    if isinstance(value, FieldInfo):
        return {name: list(messages) for name, messages in value.fields.items()}
    raise TypeError(f"object of type {type(value).__name__} is not JSON serializable")


class Marshaler(Protocol):
    def content_type(self) -> str: ...

    def marshal(self, value: Any) -> bytes: ...


class JSONMarshaler:
    """Encodes values, including error details, as compact JSON."""

    def content_type(self) -> str:
        return "application/json"

    def marshal(self, value: Any) -> bytes:
        """Encode value; raise TypeError or ValueError if it cannot be encoded."""
        text = json.dumps(value, default=_jsonable, separators=(",", ":"), allow_nan=False)
        return text.encode("utf-8")


MessageErrorHandler = Callable[
    [CallContext, Marshaler, ResponseWriter, Optional[Request], BaseException], None
]
StreamErrorHandler = Callable[
    [CallContext, bool, Marshaler, ResponseWriter, Optional[Request], BaseException], None
]


@dataclass
class ProtoErrorHandler:
    """Writes errors as JSON in the form {"error": [{"message": ...}, ...]}."""

    outgoing_header_matcher: HeaderMatcher = prefix_outgoing_header_matcher

    def message_handler(
        self,
        ctx: Optional[CallContext],
        marshaler: Marshaler,
        writer: ResponseWriter,
        request: Optional[Request],
        err: BaseException,
    ) -> None:
        """Write err as the response of a unary call, with headers and trailers."""
        ctx = ctx if ctx is not None else CallContext()
        md = ctx.server_metadata
        if md is None:
            logger.info("error handler: failed to extract ServerMetadata from context")

        forward_response_server_metadata(self.outgoing_header_matcher, writer, md)
        forward_response_trailer_header(writer, md)
        self._write_error(ctx, False, marshaler, writer, request, err)
        forward_response_trailer(writer, md)

    def stream_handler(
        self,
        ctx: Optional[CallContext],
        header_written: bool,
        marshaler: Marshaler,
        writer: ResponseWriter,
        request: Optional[Request],
        err: BaseException,
    ) -> None:
        """Write err into a streamed response; header_written tells if the status was sent."""
        ctx = ctx if ctx is not None else CallContext()
        self._write_error(ctx, header_written, marshaler, writer, request, err)

    def _write_error(
        self,
        ctx: CallContext,
        header_written: bool,
        marshaler: Marshaler,
        writer: ResponseWriter,
        request: Optional[Request],
        err: BaseException,
    ) -> None:
        fallback = _FALLBACK_WITH_STATUS if settings.status_details else _FALLBACK

        st = status_from_error(err)
        if st is None:
            st = Status(Code.UNKNOWN, str(err))
        method = request.method if request is not None else ""
        status_code, status_name = http_status_with_method(ctx, method, st)

        details: list[TargetInfo] = []
        fields: Optional[FieldInfo] = None
        for detail in st.details:
            if isinstance(detail, TargetInfo):
                details.append(detail)
            elif isinstance(detail, FieldInfo):
                fields = detail
            else:
                logger.info("error handler: failed to recognize error message")
                writer.write_header(500)
                return

        rest_err: dict[str, Any] = {"message": st.message}
        if details:
            rest_err["details"] = details
        if fields is not None:
            rest_err["fields"] = fields
        if settings.status_details:
            rest_err["code"] = status_code
            rest_err["status"] = status_name

        errs, _, override = errors_and_success_from_context(ctx)
        if not override:
            errs.append(rest_err)
        elif settings.status_details and errs:
            errs[0]["code"] = status_code
            errs[0]["status"] = status_name

        if not header_written:
            writer.headers.delete("Trailer")
            writer.headers.set("Content-Type", marshaler.content_type())
            writer.write_header(status_code)

        try:
            buf = marshaler.marshal({"error": errs} if errs else {})
        except (TypeError, ValueError) as exc:
            logger.info("error handler: failed to marshal error message %r: %s", rest_err, exc)
            writer.write_header(500)
            try:
                writer.write(fallback % exc)
            except OSError as write_err:
                logger.info("error handler: failed to write response: %s", write_err)
            return

        try:
            writer.write(buf)
        except OSError as write_err:
            logger.info("error handler: failed to write response: %s", write_err)


def new_proto_message_error_handler(matcher: HeaderMatcher) -> MessageErrorHandler:
    """Return an error handler for unary calls using matcher for outgoing headers."""
    return ProtoErrorHandler(matcher).message_handler


def new_proto_stream_error_handler(matcher: HeaderMatcher) -> StreamErrorHandler:
    """Return an error handler for streamed calls using matcher for outgoing headers."""
    return ProtoErrorHandler(matcher).stream_handler


PROTO_MESSAGE_ERROR_HANDLER = new_proto_message_error_handler(prefix_outgoing_header_matcher)
PROTO_STREAM_ERROR_HANDLER = new_proto_stream_error_handler(prefix_outgoing_header_matcher)