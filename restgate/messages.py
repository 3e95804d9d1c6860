"""Error and success messages carried in call trailer metadata."""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from typing import Any, Optional

from restgate.header import CallContext, Metadata

logger = logging.getLogger(__name__)

_UINT32 = 1 << 32


class MessageWithFields(Exception):
    """An error or success message with extra named fields."""

    def __init__(self, message: str, fields: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.fields = fields

    def __str__(self) -> str:
        return self.message


def new_with_fields(message: str, *args: Any) -> MessageWithFields:
    """Build a message from alternating keys and values.

    A key that is not a string ends the list; later pairs are ignored.
    """
    fields: dict[str, Any] = {}
    for key, value in zip(args[::2], args[1::2]):
        if not isinstance(key, str):
            break
        fields[key] = value
    return MessageWithFields(message, fields)


class _KeyCounter:
    """Hands out increasing, unevenly spaced numbers for metadata keys."""

    def __init__(self) -> None:
        self._value = time.time_ns() % 1_000_000_000 % (_UINT32 - 1)
        self._lock = threading.Lock()

    def advance(self) -> int:
        with self._lock:
            self._value = (self._value + time.time_ns() % 100 + 1) % _UINT32
            return self._value


_counter = _KeyCounter()

_SIMPLE_ESCAPES = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
    "\\": "\\\\",
    '"': '\\"',
}

_UNESCAPES = {
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    "\\": "\\",
    '"': '"',
}

_HEX_WIDTH = {"x": 2, "u": 4, "U": 8}


def _quote(text: str) -> str:
    """Quote text as a double-quoted string literal with backslash escapes."""
    out = []
    for ch in text:
        if ch in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[ch])
        elif ch.isprintable():
            out.append(ch)
        elif ord(ch) < 0x80:
            out.append(f"\\x{ord(ch):02x}")
        elif ord(ch) <= 0xFFFF:
            out.append(f"\\u{ord(ch):04x}")
        else:
            out.append(f"\\U{ord(ch):08x}")
    return '"' + "".join(out) + '"'


def _unquote(literal: str) -> str:
    """Undo _quote; raise ValueError for anything that is not a valid literal."""
    if len(literal) < 2 or literal[0] != literal[-1] or literal[0] not in '"`':
        raise ValueError("invalid quoted string")
    body = literal[1:-1]
    if literal[0] == "`":
        if "`" in body:
            raise ValueError("invalid raw string")
        return body.replace("\r", "")

    out = bytearray()
    pos = 0
    while pos < len(body):
        ch = body[pos]
        if ch in '"\n':
            raise ValueError("unescaped character in quoted string")
        if ch != "\\":
            out.extend(ch.encode("utf-8"))
            pos += 1
            continue
        if pos + 1 >= len(body):
            raise ValueError("dangling escape")
        esc = body[pos + 1]
        if esc in _UNESCAPES:
            out.extend(_UNESCAPES[esc].encode("utf-8"))
            pos += 2
        elif esc in _HEX_WIDTH:
            width = _HEX_WIDTH[esc]
            digits = body[pos + 2 : pos + 2 + width]
            if len(digits) != width or any(d not in "0123456789abcdefABCDEF" for d in digits):
                raise ValueError("invalid hex escape")
            value = int(digits, 16)
            if esc == "x":
                out.append(value)
            else:
                if 0xD800 <= value <= 0xDFFF or value > 0x10FFFF:
                    raise ValueError("invalid unicode escape")
                out.extend(chr(value).encode("utf-8"))
            pos += 2 + width
        elif esc in "01234567":
            digits = body[pos + 1 : pos + 4]
            if len(digits) != 3 or any(d not in "01234567" for d in digits):
                raise ValueError("invalid octal escape")
            value = int(digits, 8)
            if value > 0xFF:
                raise ValueError("octal escape out of range")
            out.append(value)
            pos += 4
        else:
            raise ValueError(f"unknown escape \\{esc}")
    return out.decode("utf-8", errors="replace")


def _marshal_json(value: Any) -> str:
    """Encode compactly with sorted keys and HTML-sensitive characters escaped."""
    try:
        text = json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        return ""
    for raw, escaped in (
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("&", "\\u0026"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        text = text.replace(raw, escaped)
    return text


def _store_message(ctx: CallContext, prefix: str, message: str, fields: Optional[dict]) -> None:
    key = f"{prefix}-{_counter.advance()}"
    md = Metadata.pairs(key, f"message:{message}")
    if fields is not None:
        md.append(key, f"fields:{_quote(_marshal_json(fields))}")
    ctx.set_trailer(md)


def with_error(ctx: CallContext, err: BaseException) -> None:
    """Store an error in the trailer so it is added to the JSON response."""
    fields = err.fields if isinstance(err, MessageWithFields) else None
    _store_message(ctx, "error", str(err), fields)


def with_success(ctx: CallContext, msg: MessageWithFields) -> None:
    """Store a success message in the trailer so it is added to the JSON response."""
    _store_message(ctx, "success", str(msg), msg.fields)


def new_response_error(ctx: CallContext, msg: str, *args: Any) -> MessageWithFields:
    """Store an error that replaces the standard error of the response.

    Extra fields come as alternating keys and values; pairs whose key is not
    a string are skipped. Returns an exception carrying msg for the caller.
    """
    md = Metadata.pairs("error", f"message:{msg}")
    if args:
        fields: dict[str, Any] = {}
        for key, value in zip(args[::2], args[1::2]):
            if not isinstance(key, str):
                logger.info("Key value for error details must be a string")
                continue
            fields[key] = value
        md.append("error", f"fields:{_quote(_marshal_json(fields))}")
    ctx.set_trailer(md)
    return MessageWithFields(msg)


def _decode_entry(values: list[str], target: dict[str, Any]) -> None:
    for value in values:
        kind, sep, rest = value.partition(":")
        if not sep:
            continue
        if kind == "fields":
            try:
                decoded = json.loads(_unquote(rest))
            except ValueError:
                continue
            if isinstance(decoded, dict):
                target.update(decoded)
        elif kind == "message":
            target["message"] = rest


_INT32_PATTERN = re.compile(r"[+-]?[0-9]+")


def _parse_int32(text: str) -> Optional[int]:
    if not _INT32_PATTERN.fullmatch(text):
        return None
    number = int(text)
    if not -(1 << 31) <= number < (1 << 31):
        return None
    return number


def errors_and_success_from_context(
    ctx: CallContext,
) -> tuple[list[dict[str, Any]], Optional[dict[str, Any]], bool]:
    """Read stored errors and the latest success message from the server trailer.

    Returns the errors, the success message (or None) and whether an
    overriding error was set; an overriding error comes first in the list.
    """
    if ctx.server_metadata is None:
        return [], None, False

    errors: list[dict[str, Any]] = []
    primary: Optional[dict[str, Any]] = None
    success: Optional[dict[str, Any]] = None
    override = False
    latest_success = -1

    for key, values in ctx.server_metadata.trailer_md.items():
        if key == "error":
            primary = {}
            _decode_entry(values, primary)
            override = True
        if key.startswith("error-"):
            entry: dict[str, Any] = {}
            _decode_entry(values, entry)
            errors.append(entry)
        if key.startswith("success-"):
            number = _parse_int32(key[len("success-"):])
            if number is not None:
                # later messages win; small numbers after large ones mean wraparound
                if number > latest_success or (number < 1 << 12 and latest_success > 1 << 28):
                    latest_success = number
                else:
                    continue
            success = {}
            _decode_entry(values, success)

    if override and primary is not None:
        errors.insert(0, primary)
    return errors, success, override