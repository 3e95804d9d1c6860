import pytest

from restgate.header import CallContext, Metadata, ServerMetadata
from restgate.messages import (
    MessageWithFields,
    errors_and_success_from_context,
    new_response_error,
    new_with_fields,
    with_error,
    with_success,
)


def _served(ctx):
    return CallContext(server_metadata=ServerMetadata(trailer_md=ctx.sent_trailer))


def test_new_with_fields_stops_at_non_string_key():
    msg = new_with_fields("msg", "a", 1, 2, "b", "c", 3)
    assert msg.fields == {"a": 1}
    assert str(msg) == "msg"
    assert msg.message == "msg"


def test_new_with_fields_ignores_trailing_key():
    msg = new_with_fields("msg", "a", 1, "dangling")
    assert msg.fields == {"a": 1}


def test_with_error_round_trip():
    ctx = CallContext()
    with_error(ctx, new_with_fields("bad thing", "field", "name", "count", 3))
    errors, success, override = errors_and_success_from_context(_served(ctx))
    assert errors == [{"message": "bad thing", "field": "name", "count": 3}]
    assert success is None
    assert override is False


def test_with_error_keys_are_numbered_and_distinct():
    ctx = CallContext()
    with_error(ctx, ValueError("one"))
    with_error(ctx, ValueError("two"))
    keys = list(ctx.sent_trailer)
    assert len(keys) == len(set(keys)) == 2
    assert all(key.startswith("error-") and key[len("error-"):].isdigit() for key in keys)


def test_with_error_plain_exception_has_only_message():
    ctx = CallContext()
    with_error(ctx, RuntimeError("plain"))
    errors, _, _ = errors_and_success_from_context(_served(ctx))
    assert errors == [{"message": "plain"}]


def test_special_characters_survive_round_trip():
    note = 'say "hi"\n<b>&\u00e9\t\\'
    ctx = CallContext()
    with_error(ctx, MessageWithFields("m", {"note": note}))
    errors, _, _ = errors_and_success_from_context(_served(ctx))
    assert errors[0]["note"] == note


def test_new_response_error_overrides():
    ctx = CallContext()
    err = new_response_error(ctx, "boom", "x", 1, 2, "skipped", "y", "z")
    assert str(err) == "boom"
    errors, _, override = errors_and_success_from_context(_served(ctx))
    assert override is True
    assert errors == [{"message": "boom", "x": 1, "y": "z"}]


def test_primary_error_comes_first():
    ctx = CallContext()
    with_error(ctx, ValueError("later"))
    new_response_error(ctx, "primary")
    errors, _, override = errors_and_success_from_context(_served(ctx))
    assert override is True
    assert [e["message"] for e in errors] == ["primary", "later"]


def test_latest_success_wins():
    ctx = CallContext()
    with_success(ctx, new_with_fields("first"))
    with_success(ctx, new_with_fields("second", "n", 5))
    _, success, _ = errors_and_success_from_context(_served(ctx))
    assert success == {"message": "second", "n": 5}


@pytest.mark.parametrize(
    "pairs",
    [
        ("success-1", "message:deleted 1 item", "success-5", "message:created 1 item"),
        ("success-5", "message:created 1 item", "success-1", "message:deleted 1 item"),
    ],
)
def test_success_with_higher_number_wins(pairs):
    ctx = CallContext(server_metadata=ServerMetadata(trailer_md=Metadata.pairs(*pairs)))
    _, success, _ = errors_and_success_from_context(ctx)
    assert success["message"] == "created 1 item"


def test_success_wraparound():
    md = Metadata.pairs("success-300000000", "message:old", "success-7", "message:new")
    ctx = CallContext(server_metadata=ServerMetadata(trailer_md=md))
    _, success, _ = errors_and_success_from_context(ctx)
    assert success["message"] == "new"


def test_success_with_unparsable_number_is_taken():
    md = Metadata.pairs("success-9", "message:numbered", "success-abc", "message:named")
    ctx = CallContext(server_metadata=ServerMetadata(trailer_md=md))
    _, success, _ = errors_and_success_from_context(ctx)
    assert success["message"] == "named"


def test_invalid_fields_are_ignored():
    md = Metadata.pairs("error-1", "message:m", "error-1", "fields:not-quoted")
    ctx = CallContext(server_metadata=ServerMetadata(trailer_md=md))
    errors, _, _ = errors_and_success_from_context(ctx)
    assert errors == [{"message": "m"}]


def test_no_server_metadata():
    assert errors_and_success_from_context(CallContext()) == ([], None, False)