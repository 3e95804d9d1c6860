"""Collection operator query keys, page info metadata and query filters."""

from __future__ import annotations

from restgate.header import CallContext, Metadata, Request

FILTER_QUERY_KEY = "_filter"
SORT_QUERY_KEY = "_order_by"
FIELDS_QUERY_KEY = "_fields"
LIMIT_QUERY_KEY = "_limit"
OFFSET_QUERY_KEY = "_offset"
PAGE_TOKEN_QUERY_KEY = "_page_token"
SEARCH_QUERY_KEY = "_fts"
PAGE_INFO_SIZE_META_KEY = "status-page-info-size"
PAGE_INFO_OFFSET_META_KEY = "status-page-info-offset"
PAGE_INFO_PAGE_TOKEN_META_KEY = "status-page-info-page_token"

QUERY_URL = "query_url"

_DEFAULT_FILTER_FIELDS = (
    "paging",
    LIMIT_QUERY_KEY,
    OFFSET_QUERY_KEY,
    PAGE_TOKEN_QUERY_KEY,
    "order_by",
    SORT_QUERY_KEY,
    "fields",
    FIELDS_QUERY_KEY,
    "filter",
    FILTER_QUERY_KEY,
)

DEFAULT_QUERY_FILTER: frozenset[tuple[str, ...]] = frozenset(
    (name,) for name in _DEFAULT_FILTER_FIELDS
)


def metadata_annotator(ctx: CallContext, request: Request) -> Metadata:
    """Return metadata carrying the URL of the incoming request."""
    return Metadata({QUERY_URL: [request.url]})


def set_page_info(
    ctx: CallContext, page_token: str, offset: int, size: int, no_more: bool
) -> None:
    """Send page info as header metadata of the call.

    A non-zero offset with no more pages is sent as "null".
    """
    fields: dict[str, list[str]] = {}
    if page_token:
        fields[PAGE_INFO_PAGE_TOKEN_META_KEY] = [page_token]
    if offset != 0 and no_more:
        fields[PAGE_INFO_OFFSET_META_KEY] = ["null"]
    elif offset != 0:
        fields[PAGE_INFO_OFFSET_META_KEY] = [str(offset)]
    if size != 0:
        fields[PAGE_INFO_SIZE_META_KEY] = [str(size)]
    ctx.set_header(Metadata(fields))


def query_filter_with(extra_fields) -> frozenset[tuple[str, ...]]:
    """Return the default query filter extended with the given field names."""
    return DEFAULT_QUERY_FILTER | frozenset((name,) for name in extra_fields)