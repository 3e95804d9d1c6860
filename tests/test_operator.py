from restgate.header import CallContext, Request, header
from restgate.operator import (
    DEFAULT_QUERY_FILTER,
    PAGE_INFO_OFFSET_META_KEY,
    PAGE_INFO_PAGE_TOKEN_META_KEY,
    PAGE_INFO_SIZE_META_KEY,
    QUERY_URL,
    metadata_annotator,
    query_filter_with,
    set_page_info,
)

_PAGE_KEYS = {PAGE_INFO_OFFSET_META_KEY, PAGE_INFO_PAGE_TOKEN_META_KEY, PAGE_INFO_SIZE_META_KEY}


def test_metadata_annotator_stores_url():
    url = "http://app.com?_limit=20&_offset=10"
    md = metadata_annotator(CallContext(), Request(method="GET", url=url))
    assert md == {QUERY_URL: [url]}
    assert header(CallContext(incoming=md), QUERY_URL) == url


def test_set_page_info_all_fields():
    ctx = CallContext()
    set_page_info(ctx, "ptoken", 10, 20, False)
    assert ctx.sent_header[PAGE_INFO_PAGE_TOKEN_META_KEY] == ["ptoken"]
    assert ctx.sent_header[PAGE_INFO_OFFSET_META_KEY] == ["10"]
    assert ctx.sent_header[PAGE_INFO_SIZE_META_KEY] == ["20"]


def test_set_page_info_no_more_pages():
    ctx = CallContext()
    set_page_info(ctx, "", 30, 0, True)
    assert ctx.sent_header[PAGE_INFO_OFFSET_META_KEY] == ["null"]
    assert _PAGE_KEYS & set(ctx.sent_header) == {PAGE_INFO_OFFSET_META_KEY}


def test_set_page_info_zero_values_send_nothing():
    ctx = CallContext()
    set_page_info(ctx, "", 0, 0, True)
    assert _PAGE_KEYS & set(ctx.sent_header) == set()


def test_query_filter_with_extends_defaults():
    extended = query_filter_with(["extra", "more"])
    assert DEFAULT_QUERY_FILTER < extended
    assert extended - DEFAULT_QUERY_FILTER == {("extra",), ("more",)}


def test_query_filter_without_extras_is_default():
    assert query_filter_with([]) == DEFAULT_QUERY_FILTER
    assert ("_order_by",) in query_filter_with([])
    assert ("_fts",) not in query_filter_with([])