"""Forwarding call responses to HTTP clients as JSON in the REST API layout."""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from restgate.errors import (
    PROTO_MESSAGE_ERROR_HANDLER,
    PROTO_STREAM_ERROR_HANDLER,
    Marshaler,
    MessageErrorHandler,
    StreamErrorHandler,
)
from restgate.fields import retain_fields
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
from restgate.status import Code, http_status_from_code, http_status_with_method, settings

logger = logging.getLogger(__name__)

ResponseOption = Callable[[CallContext, ResponseWriter, Any], None]

_INTERNAL_ERROR = "forward response message: internal error"


def _plain(resp: Any) -> Any:
    """Turn a dataclass message into plain mappings and lists for encoding."""
    if dataclasses.is_dataclass(resp) and not isinstance(resp, type):
        return dataclasses.asdict(resp)
    return resp


def _apply_options(
    ctx: CallContext, writer: ResponseWriter, resp: Any, options: Iterable[ResponseOption]
) -> Optional[BaseException]:
    """Run each option in turn; return the first error raised, if any."""
    for option in options:
        try:
            option(ctx, writer, resp)
        except Exception as exc:
            logger.info("error handling ForwardResponseOptions: %s", exc)
            return exc
    return None


def _delimiter(marshaler: Any) -> bytes:
    get = getattr(marshaler, "delimiter", None)
    if callable(get):
        return get()
    return b"\n"


@dataclass
class ResponseForwarder:
    """Writes unary and streamed call responses to an HTTP response."""

    outgoing_header_matcher: HeaderMatcher = prefix_outgoing_header_matcher
    message_err_handler: MessageErrorHandler = PROTO_MESSAGE_ERROR_HANDLER
    stream_err_handler: StreamErrorHandler = PROTO_STREAM_ERROR_HANDLER

    def forward_message(
        self,
        ctx: Optional[CallContext],
        marshaler: Marshaler,
        writer: ResponseWriter,
        request: Optional[Request],
        resp: Any,
        *args: ResponseOption,
    ) -> None:
        """Write resp as JSON, adding stored errors and the success status.

        Extra arguments are options called with (ctx, writer, resp); an error
        they raise is written instead of the response.
        """
        ctx = ctx if ctx is not None else CallContext()
        md = ctx.server_metadata
        if md is None:
            logger.info("forward response message: failed to extract ServerMetadata from context")
            self.message_err_handler(ctx, marshaler, writer, request, RuntimeError(_INTERNAL_ERROR))
            return

        forward_response_server_metadata(self.outgoing_header_matcher, writer, md)
        forward_response_trailer_header(writer, md)
        writer.headers.set("Content-Type", marshaler.content_type())

        err = _apply_options(ctx, writer, resp, args)
        if err is not None:
            self.message_err_handler(ctx, marshaler, writer, request, err)
            return

        # The response is decoded into a plain mapping so that the status
        # and messages can be added next to the service's own fields.
        try:
            data = marshaler.marshal(_plain(resp))
        except (TypeError, ValueError) as exc:
            logger.info("forward response: failed to marshal response: %s", exc)
            self.message_err_handler(ctx, marshaler, writer, request, exc)
            return

        try:
            dynmap = json.loads(data)
        except ValueError as exc:
            logger.info("forward response: failed to unmarshal response: %s", exc)
            self.message_err_handler(ctx, marshaler, writer, request, exc)
            return
        if dynmap is None:
            dynmap = {}
        if not isinstance(dynmap, dict):
            exc = ValueError("response is not a JSON object")
            logger.info("forward response: failed to unmarshal response: %s", exc)
            self.message_err_handler(ctx, marshaler, writer, request, exc)
            return

        method = request.method if request is not None else ""
        status_code, status_name = http_status_with_method(ctx, method, None)

        retain_fields(request, dynmap)
        errs, success, _ = errors_and_success_from_context(ctx)
        if errs and "error" not in dynmap:
            dynmap["error"] = errs
        # A service whose response has its own "success" field keeps it.
        if "success" not in dynmap:
            if settings.status_details:
                if success is None:
                    success = {}
                success["code"] = status_code
                success["status"] = status_name
            if success is not None:
                dynmap["success"] = success

        try:
            body = json.dumps(dynmap, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as exc:
            logger.info("forward response: failed to marshal response: %s", exc)
            self.message_err_handler(ctx, marshaler, writer, request, exc)
            return

        writer.write_header(status_code)
        try:
            writer.write(body)
        except OSError as exc:
            logger.info("forward response: failed to write response: %s", exc)

        forward_response_trailer(writer, md)

    def forward_stream(
        self,
        ctx: Optional[CallContext],
        marshaler: Marshaler,
        writer: ResponseWriter,
        request: Optional[Request],
        recv: Iterable[Any],
        *args: ResponseOption,
    ) -> None:
        """Write each message from recv as a delimited JSON chunk.

        The status defaults to 206 Partial Content. An error raised while
        iterating recv is written after the chunks already sent.
        """
        ctx = ctx if ctx is not None else CallContext()
        if not callable(getattr(writer, "flush", None)):
            logger.info("forward response stream: flush not supported in %s", type(writer).__name__)
            self.stream_err_handler(ctx, False, marshaler, writer, request, RuntimeError(_INTERNAL_ERROR))
            return

        md = ctx.server_metadata
        if md is None:
            logger.info("forward response stream: failed to extract ServerMetadata from context")
            self.stream_err_handler(ctx, False, marshaler, writer, request, RuntimeError(_INTERNAL_ERROR))
            return
        forward_response_server_metadata(self.outgoing_header_matcher, writer, md)

        writer.headers.set("Transfer-Encoding", "chunked")
        writer.headers.set("Content-Type", marshaler.content_type())

        err = _apply_options(ctx, writer, None, args)
        if err is not None:
            self.stream_err_handler(ctx, False, marshaler, writer, request, err)
            return

        method = request.method if request is not None else ""
        status_code, _ = http_status_with_method(ctx, method, None)
        if status_code == 200:
            status_code = http_status_from_code(Code.PARTIAL_CONTENT)
        writer.write_header(status_code)

        delimiter = _delimiter(marshaler)
        messages = iter(recv)
        while True:
            try:
                resp = next(messages)
            except StopIteration:
                return
            except Exception as exc:
                self.stream_err_handler(ctx, True, marshaler, writer, request, exc)
                return

            err = _apply_options(ctx, writer, resp, args)
            if err is not None:
                self.stream_err_handler(ctx, True, marshaler, writer, request, err)
                return

            try:
                data = marshaler.marshal(_plain(resp))
            except (TypeError, ValueError) as exc:
                self.stream_err_handler(ctx, True, marshaler, writer, request, exc)
                return

            try:
                writer.write(data)
            except OSError as exc:
                logger.info("forward response stream: failed to write response object: %s", exc)
                return
            try:
                writer.write(delimiter)
            except OSError as exc:
                logger.info("forward response stream: failed to send delimiter chunk: %s", exc)
                return
            writer.flush()


def new_forward_response_message(
    out: HeaderMatcher, meh: MessageErrorHandler, seh: StreamErrorHandler
) -> Callable[..., None]:
    """Return a forwarder of unary responses built from the given matcher and handlers."""
    return ResponseForwarder(out, meh, seh).forward_message


def new_forward_response_stream(
    out: HeaderMatcher, meh: MessageErrorHandler, seh: StreamErrorHandler
) -> Callable[..., None]:
    """Return a forwarder of streamed responses built from the given matcher and handlers."""
    return ResponseForwarder(out, meh, seh).forward_stream


FORWARD_RESPONSE_MESSAGE = new_forward_response_message(
    prefix_outgoing_header_matcher, PROTO_MESSAGE_ERROR_HANDLER, PROTO_STREAM_ERROR_HANDLER
)
FORWARD_RESPONSE_STREAM = new_forward_response_stream(
    prefix_outgoing_header_matcher, PROTO_MESSAGE_ERROR_HANDLER, PROTO_STREAM_ERROR_HANDLER
)