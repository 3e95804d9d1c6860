from dataclasses import dataclass
from typing import List, Optional

import pytest

from restgate.field_presence import (
    FIELD_PRESENCE_META_KEY,
    FieldMask,
    field_mask_from_paths,
    new_presence_annotator,
    presence_client_interceptor,
)
from restgate.header import CallContext, Metadata, Request, ServerMetadata

_ATLAS = """{
  "name": "atlas",
  "burden": {
    "duration": "forever",
    "weight": "earth",
    "breaks": [],
    "replacements": {
      "hero": {
        "name": "hercules",
        "duration": "temporary",
        "lineage": {"mother": "alcmena", "father": "zeus"}
      },
      "mortals": []
    }
  }
}"""


def _normalised(entries):
    return [sorted(entry.split("$")) for entry in entries]


@pytest.mark.parametrize(
    "body, expected",
    [
        ("", []),
        ("{}", []),
        ('{"one": {}}', ["One"]),
        ('{"one":{"two":"a", "three":[]}, "four": 5}', ["Four$One.Two$One.Three"]),
        (
            '{"objects":[{"one": {"two":"a", "three":[]}, "four": 5}, {"one":{"two":"a", "three":[]}, "four": 5}]}',
            ["Four$One.Two$One.Three", "Four$One.Two$One.Three"],
        ),
        (
            _ATLAS,
            [
                "Name$Burden.Duration$Burden.Weight$Burden.Breaks$Burden.Replacements.Hero.Name"
                "$Burden.Replacements.Hero.Duration$Burden.Replacements.Hero.Lineage.Mother"
                "$Burden.Replacements.Hero.Lineage.Father$Burden.Replacements.Mortals"
            ],
        ),
        ('{"first_name": 1}', ["FirstName"]),
    ],
)
def test_annotator(body, expected):
    md = new_presence_annotator("POST")(CallContext(), Request("POST", "", body.encode()))
    assert md is not None
    got = md.get(FIELD_PRESENCE_META_KEY, [])
    assert len(got) == len(expected)
    assert _normalised(got) == _normalised(expected)


def test_annotator_invalid_json():
    assert new_presence_annotator("POST")(CallContext(), Request("POST", "", b"{")) is None


def test_annotator_other_method_and_no_request():
    annotator = new_presence_annotator("POST")
    assert annotator(CallContext(), Request("GET", "", b'{"a": 1}')) is None
    assert annotator(CallContext(), None) is None


def test_empty_body_sets_empty_key():
    md = new_presence_annotator("PATCH")(CallContext(), Request("PATCH", "", b""))
    assert md == {FIELD_PRESENCE_META_KEY: []}


def test_field_mask_from_paths():
    assert field_mask_from_paths([]) == FieldMask([])
    assert field_mask_from_paths(["a$b"]) == FieldMask(["a", "b"])
    assert field_mask_from_paths(["a", "b$c"]) == [FieldMask(["a"]), FieldMask(["b", "c"])]


@dataclass
class DummyReq:
    some_field_mask_field: Optional[FieldMask] = None


@dataclass
class ReqWithoutFieldMask:
    foo: str = ""
    bar: Optional[DummyReq] = None
    baz: Optional[int] = None


def _invoker(calls):
    def invoke(ctx, method, req, reply, cc, *opts):
        calls.append(req)
        return "done"

    return invoke


def _server_ctx(values):
    return CallContext(
        server_metadata=ServerMetadata(header_md=Metadata({FIELD_PRESENCE_META_KEY: values}))
    )


def test_sets_field_mask_if_none():
    calls = []
    req = DummyReq()
    result = presence_client_interceptor()(
        _server_ctx(["one.two.three$one.four"]), "POST", req, None, None, _invoker(calls)
    )
    assert result == "done"
    assert calls == [req]
    assert req.some_field_mask_field == FieldMask(["one.two.three", "one.four"])


def test_sets_empty_field_mask():
    req = DummyReq()
    presence_client_interceptor()(_server_ctx([]), "POST", req, None, None, _invoker([]))
    assert req.some_field_mask_field == FieldMask([])


def test_keeps_existing_field_mask():
    req = DummyReq(FieldMask([]))
    presence_client_interceptor()(
        _server_ctx(["one.two.three$one.four"]), "POST", req, None, None, _invoker([])
    )
    assert req.some_field_mask_field == FieldMask([])


def test_request_without_field_mask():
    calls = []
    req = ReqWithoutFieldMask(foo="bar")
    result = presence_client_interceptor()(
        _server_ctx(["one"]), "POST", req, None, None, _invoker(calls)
    )
    assert result == "done"
    assert req == ReqWithoutFieldMask(foo="bar")
    assert calls == [req]


def test_none_request_still_invokes():
    calls = []
    presence_client_interceptor()(_server_ctx(["one"]), "POST", None, None, None, _invoker(calls))
    assert calls == [None]


@dataclass
class RequestWithFieldMask:
    field_mask: Optional[FieldMask] = None


def _incoming(values):
    return CallContext(incoming=Metadata({FIELD_PRESENCE_META_KEY: values}))


@pytest.mark.parametrize(
    "ctx, initial, expected, override",
    [
        (CallContext(), ["One"], ["One"], True),
        (_incoming(["One"]), None, ["One"], True),
        (_incoming(["Two"]), ["One"], ["Two"], True),
        (_incoming(["Two"]), ["One"], ["One"], False),
    ],
)
def test_override_field_mask_option(ctx, initial, expected, override):
    req = RequestWithFieldMask(None if initial is None else FieldMask(initial))
    presence_client_interceptor(override)(ctx, "", req, None, None, _invoker([]))
    assert req.field_mask == FieldMask(expected)


@dataclass
class RequestWithMultiFieldMask:
    field_masks: Optional[List[FieldMask]] = None


@pytest.mark.parametrize(
    "ctx, initial, expected, override",
    [
        (CallContext(), [["One"], ["Two"]], [["One"], ["Two"]], True),
        (_incoming(["One", "Two"]), None, [["One"], ["Two"]], True),
        (_incoming(["Four", "Five"]), [["One"], ["Two"]], [["Four"], ["Five"]], True),
        (_incoming(["Four", "Five"]), [["One"], ["Two"]], [["One"], ["Two"]], False),
    ],
)
def test_override_multiple_field_masks_option(ctx, initial, expected, override):
    masks = None if initial is None else [FieldMask(p) for p in initial]
    req = RequestWithMultiFieldMask(masks)
    presence_client_interceptor(override)(ctx, "", req, None, None, _invoker([]))
    assert req.field_masks == [FieldMask(p) for p in expected]