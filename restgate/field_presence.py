"""Field masks built from the fields present in a JSON request body."""

from __future__ import annotations

import dataclasses
import json
import re
import types
import typing
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from restgate.header import CallContext, Metadata, Request, header_n

FIELD_PRESENCE_META_KEY = "field-paths"
PATHS_SEPARATOR = "$"
BULK_FIELD = "objects"

_NONE_TYPE = type(None)


@dataclass
class FieldMask:
    """A set of field paths such as "Burden.Weight"."""

    paths: list[str] = field(default_factory=list)


def _camel(name: str) -> str:
    """Convert a snake_case name into CamelCase."""
    if not name:
        return ""
    out: list[str] = []
    pos = 0
    if name[0] == "_":
        out.append("X")
        pos = 1
    while pos < len(name):
        ch = name[pos]
        if ch == "_" and pos + 1 < len(name) and "a" <= name[pos + 1] <= "z":
            pos += 1
            continue
        if ch.isascii() and ch.isdigit():
            out.append(ch)
            pos += 1
            continue
        out.append(ch.upper() if "a" <= ch <= "z" else ch)
        pos += 1
        while pos < len(name) and "a" <= name[pos] <= "z":
            out.append(name[pos])
            pos += 1
    return "".join(out)


def _is_leaf(path: tuple[str, ...], node: Any) -> bool:
    if isinstance(node, dict):
        return not node and bool(path)
    return bool(path)


def _roots(root: Any) -> list[Any]:
    if isinstance(root, dict):
        bulk = root.get(BULK_FIELD)
        if isinstance(bulk, list):
            return bulk
    return [root]


def _leaf_paths(root: Any) -> list[str]:
    queue: deque[tuple[tuple[str, ...], Any]] = deque([((), root)])
    paths: list[str] = []
    while queue:
        path, node = queue.popleft()
        if _is_leaf(path, node):
            paths.append(".".join(path))
        elif isinstance(node, dict):
            for key, value in node.items():
                queue.append(((*path, _camel(key)), value))
    return paths


def new_presence_annotator(*methods: str) -> Callable[[CallContext, Optional[Request]], Optional[Metadata]]:
    """Return an annotator that stores the field paths of a request body in metadata.

    Only requests with one of the given methods are annotated; a body that
    is not valid JSON gives None. A bulk body {"objects": [...]} gives one
    entry per object.
    """

    def annotator(ctx: CallContext, request: Optional[Request]) -> Optional[Metadata]:
        if request is None or request.method not in methods:
            return None
        md = Metadata()
        if not request.body:
            md[FIELD_PRESENCE_META_KEY] = []
            return md
        try:
            root = json.loads(request.body)
        except ValueError:
            return None
        for item in _roots(root):
            entry = PATHS_SEPARATOR.join(_leaf_paths(item))
            if entry:
                md.append(FIELD_PRESENCE_META_KEY, entry)
        return md

    return annotator


def field_mask_from_paths(paths: list[str]) -> Union[FieldMask, list[FieldMask]]:
    """Build one mask from a single entry, or one mask per entry for several."""
    if not paths:
        return FieldMask()
    if len(paths) > 1:
        return [FieldMask(entry.split(PATHS_SEPARATOR)) for entry in paths]
    return FieldMask(paths[0].split(PATHS_SEPARATOR))


_SINGLE_TEXT = re.compile(r"([\w.]*\.)?FieldMask")
_LIST_TEXT = re.compile(r"(typing\.)?[Ll]ist\[([\w.]*\.)?FieldMask\]")


def _strip_optional_text(text: str) -> str:
    text = text.replace(" ", "")
    for prefix in ("typing.Optional[", "Optional["):
        if text.startswith(prefix) and text.endswith("]"):
            return text[len(prefix):-1]
    parts = [part for part in text.split("|") if part != "None"]
    return parts[0] if len(parts) == 1 else text


def _annotation_matches(annotation: Any, want_list: bool) -> bool:
    if isinstance(annotation, str):
        text = _strip_optional_text(annotation)
        pattern = _LIST_TEXT if want_list else _SINGLE_TEXT
        return pattern.fullmatch(text) is not None
    if typing.get_origin(annotation) in (Union, types.UnionType):
        others = [arg for arg in typing.get_args(annotation) if arg is not _NONE_TYPE]
        if len(others) != 1:
            return False
        annotation = others[0]
    if want_list:
        return typing.get_origin(annotation) is list and typing.get_args(annotation) == (FieldMask,)
    return annotation is FieldMask


def _apply_field_mask(ctx: CallContext, req: Any, override: bool) -> None:
    paths = header_n(ctx, FIELD_PRESENCE_META_KEY, -1)
    if paths is None:
        return
    mask = field_mask_from_paths(paths)
    if not dataclasses.is_dataclass(req) or isinstance(req, type):
        return
    want_list = isinstance(mask, list)
    for f in dataclasses.fields(req):
        if _annotation_matches(f.type, want_list):
            if override or getattr(req, f.name) is None:
                setattr(req, f.name, mask)
            return


def presence_client_interceptor(override_field_mask: bool = False) -> Callable[..., Any]:
    """Return a client interceptor that fills the request's field mask from metadata.

    The first field typed FieldMask (or list of FieldMask for bulk requests)
    is set when it is empty, or always when override_field_mask is true.
    The invoker is always called and its result returned.
    """

    def interceptor(ctx: CallContext, method: str, req: Any, reply: Any, cc: Any, invoker: Callable[..., Any], *opts: Any) -> Any:
        if req is not None:
            _apply_field_mask(ctx, req, override_field_mask)
        return invoker(ctx, method, req, reply, cc, *opts)

    return interceptor