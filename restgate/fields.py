"""Selecting which fields of a JSON response are kept."""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit

from restgate.header import Request
from restgate.operator import FIELDS_QUERY_KEY

FieldSelection = dict[str, "FieldSelection"]


def parse_field_selection(text: str) -> Optional[FieldSelection]:
    """Parse "a.b,c" into nested mappings {"a": {"b": {}}, "c": {}}; None if empty."""
    text = text.strip()
    if not text:
        return None
    selection: FieldSelection = {}
    for item in text.split(","):
        level = selection
        for name in (part.strip() for part in item.split(".")):
            if not name:
                break
            level = level.setdefault(name, {})
    return selection


def retain_fields(request: Optional[Request], data: dict[str, Any]) -> None:
    """Keep only the fields named in the request's _fields query in data's results."""
    if request is None:
        return
    values = parse_qs(urlsplit(request.url).query, keep_blank_values=True).get(FIELDS_QUERY_KEY)
    text = values[0] if values else ""
    if not text:
        return
    fields = parse_field_selection(text)
    if fields is None:
        return
    for key, result in data.items():
        if key == "page":
            continue
        if isinstance(result, list):
            for item in result:
                if isinstance(item, dict):
                    do_retain_fields(item, fields)
        elif isinstance(result, dict):
            do_retain_fields(result, fields)


def do_retain_fields(obj: dict[str, Any], fields: Optional[FieldSelection]) -> None:
    """Remove from obj, recursively, every key the selection does not name."""
    if not fields:
        return
    for key in list(obj):
        if key not in fields:
            del obj[key]
            continue
        value = obj[key]
        subs = fields[key]
        if isinstance(value, dict):
            if subs:
                do_retain_fields(value, subs)
        elif isinstance(value, list):
            for item in value:
                if isinstance(item, dict):
                    do_retain_fields(item, subs)