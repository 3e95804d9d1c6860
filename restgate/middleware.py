"""Reading and writing collection operator fields of request and response messages."""

from __future__ import annotations

import dataclasses
import logging
import typing
from typing import Any, Callable, Optional

from restgate.header import CallContext
from restgate.operator import set_page_info

logger = logging.getLogger(__name__)

_NONE_TYPE = type(None)


class CollectionOpError(TypeError):
    """A message or operator cannot hold or yield a collection operator."""


def _type_name(value: Any) -> str:
    return type(value).__name__


def _is_message(value: Any) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def _strip_optional_text(text: str) -> str:
    text = text.strip()
    for prefix in ("typing.Optional[", "Optional["):
        if text.startswith(prefix) and text.endswith("]"):
            return text[len(prefix):-1].strip()
    parts = [part.strip() for part in text.split("|")]
    remaining = [part for part in parts if part != "None"]
    return remaining[0] if len(remaining) == 1 else text


def _annotation_matches(annotation: Any, op_type: type) -> bool:
    if annotation is op_type:
        return True
    if isinstance(annotation, str):
        name = _strip_optional_text(annotation).rsplit(".", 1)[-1]
        return name in (op_type.__name__, op_type.__qualname__)
    args = typing.get_args(annotation)
    if args and typing.get_origin(annotation) is not None:
        others = [arg for arg in args if arg is not _NONE_TYPE]
        return len(others) == 1 and others[0] is op_type
    return False


def _matching_fields(message: Any, op_type: type) -> list[str]:
    return [
        f.name
        for f in dataclasses.fields(message)
        if _annotation_matches(f.type, op_type)
    ]


def _assign(message: Any, name: str, value: Any, op: Any) -> None:
    try:
        setattr(message, name, value)
    except (AttributeError, dataclasses.FrozenInstanceError) as exc:
        raise CollectionOpError(
            f"operation field {op!r} in message {message!r} is invalid or cannot be set"
        ) from exc


def set_collection_ops(req: Any, op: Any) -> None:
    """Store op in every field of req whose declared type is the type of op."""
    if req is None:
        raise CollectionOpError("request is not a pointer - invalid")
    if not _is_message(req):
        raise CollectionOpError(f"request value is not a struct - {_type_name(req)}")
    if op is None:
        return
    for name in _matching_fields(req, type(op)):
        _assign(req, name, op, op)


def _get_and_unset(res: Any, op_type: Optional[type], unset: bool) -> tuple[str, Any]:
    if res is None:
        raise CollectionOpError("response is not a pointer - invalid")
    if not _is_message(res):
        raise CollectionOpError(f"response value is not a struct - {_type_name(res)}")
    if op_type is None:
        raise CollectionOpError("operator is not a pointer - invalid")

    field_name = ""
    found: Any = None
    for name in _matching_fields(res, op_type):
        current = getattr(res, name)
        if current is not None:
            found = current
        field_name = name
        if unset:
            _assign(res, name, None, op_type)
    return field_name, found


def get_collection_op(res: Any, op_type: type) -> Any:
    """Return the value of the field of res typed op_type, or None."""
    return _get_and_unset(res, op_type, False)[1]


def unset_op(res: Any, op_type: type) -> Any:
    """Return the value of the field of res typed op_type and clear that field."""
    return _get_and_unset(res, op_type, True)[1]


def get_op(message: Any, op_type: type) -> tuple[str, Any]:
    """Return the name and value of the field of message typed op_type.

    The name is empty and the value None when no such field exists.
    """
    field_name, value = _get_and_unset(message, op_type, False)
    if not field_name:
        return "", None
    return field_name, value


def _page_info_values(page: Any) -> tuple[str, int, int, bool]:
    if page is None:
        return "", 0, 0, False
    no_more = getattr(page, "no_more", False)
    if callable(no_more):
        no_more = no_more()
    return (
        getattr(page, "page_token", "") or "",
        getattr(page, "offset", 0) or 0,
        getattr(page, "size", 0) or 0,
        bool(no_more),
    )


def unary_server_interceptor(page_info_type: type) -> Callable[..., Any]:
    """Return a server interceptor that moves page info from the response into headers.

    The page info object is read through its page_token, offset and size
    attributes and an optional no_more attribute or method.
    """

    def interceptor(ctx: CallContext, req: Any, info: Any, handler: Callable[[CallContext, Any], Any]) -> Any:
        if req is None:
            logger.warning("collection operator interceptor: empty request %r", req)
            return handler(ctx, req)

        res = handler(ctx, req)

        page = None
        try:
            page = unset_op(res, page_info_type)
        except CollectionOpError as exc:
            logger.error("collection operator interceptor: failed to set page info - %s", exc)

        set_page_info(ctx, *_page_info_values(page))
        return res

    return interceptor