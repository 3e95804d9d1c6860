"""Metadata containers, HTTP header helpers and header matchers."""

from __future__ import annotations

import string
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Optional

METADATA_PREFIX = "grpcgateway-"
METADATA_HEADER_PREFIX = "Grpc-Metadata-"
METADATA_TRAILER_PREFIX = "Grpc-Trailer-"
X_FORWARDED_FOR = "X-Forwarded-For"

HeaderMatcher = Callable[[str], Optional[str]]

_TOKEN_CHARS = frozenset(string.ascii_letters + string.digits + "!#$%&'*+-.^_`|~")

_PERMANENT_HTTP_HEADERS = frozenset(
    {
        "Accept",
        "Accept-Charset",
        "Accept-Language",
        "Accept-Ranges",
        "Authorization",
        "Cache-Control",
        "Content-Type",
        "Cookie",
        "Date",
        "Expect",
        "From",
        "Host",
        "If-Match",
        "If-Modified-Since",
        "If-None-Match",
        "If-Schedule-Tag-Match",
        "If-Unmodified-Since",
        "Max-Forwards",
        "Origin",
        "Pragma",
        "Referer",
        "User-Agent",
        "Via",
        "Warning",
    }
)

# Outgoing metadata keys that are forwarded as response headers: none.
_OUTGOING_PASSTHROUGH: frozenset[str] = frozenset()


def _canonical_key(key: str) -> str:
    """Return the canonical MIME form of a header key ("content-type" -> "Content-Type")."""
    if not key or any(ch not in _TOKEN_CHARS for ch in key):
        return key
    return "-".join(part[:1].upper() + part[1:].lower() for part in key.split("-"))


class Metadata(dict):
    """A multi-valued mapping with lower-case keys, as carried by RPC calls."""

    def __init__(self, data=None):
        super().__init__()
        if data:
            for key, values in dict(data).items():
                if isinstance(values, str):
                    values = [values]
                self.setdefault(key.lower(), []).extend(values or [])

    @classmethod
    def pairs(cls, *args: str) -> "Metadata":
        """Build metadata from alternating keys and values."""
        if len(args) % 2:
            raise ValueError(f"metadata: pairs got an odd number of arguments: {len(args)}")
        md = cls()
        for key, value in zip(args[::2], args[1::2]):
            md.setdefault(key.lower(), []).append(value)
        return md

    def append(self, key: str, *args: str) -> None:
        """Add values to a key, keeping the existing ones."""
        if not args:
            return
        self.setdefault(key.lower(), []).extend(args)

    @classmethod
    def join(cls, *args: Optional["Metadata"]) -> "Metadata":
        """Merge several metadata mappings into a new one."""
        joined = cls()
        for md in args:
            if md is None:
                continue
            for key, values in md.items():
                joined.setdefault(key, []).extend(values)
        return joined


@dataclass
class ServerMetadata:
    """Header and trailer metadata received from the server."""

    header_md: Metadata = field(default_factory=Metadata)
    trailer_md: Metadata = field(default_factory=Metadata)


@dataclass
class CallContext:
    """The state of one call: metadata that came in, went out and was sent back."""

    incoming: Optional[Metadata] = None
    outgoing: Optional[Metadata] = None
    server_metadata: Optional[ServerMetadata] = None
    sent_header: Metadata = field(default_factory=Metadata)
    sent_trailer: Metadata = field(default_factory=Metadata)

    def set_header(self, md: Metadata) -> None:
        """Add metadata to the header sent back to the caller."""
        _merge_into(self.sent_header, md)

    def set_trailer(self, md: Metadata) -> None:
        """Add metadata to the trailer sent back to the caller."""
        _merge_into(self.sent_trailer, md)


def _merge_into(target: Metadata, md: Metadata) -> None:
    for key, values in md.items():
        target.setdefault(key.lower(), []).extend(values)


@dataclass
class Request:
    """An incoming HTTP request."""

    method: str = "GET"
    url: str = ""
    body: bytes = b""


class Headers:
    """Case-insensitive multi-valued HTTP headers."""

    def __init__(self) -> None:
        self._values: dict[str, list[str]] = {}

    def add(self, key: str, value: str) -> None:
        self._values.setdefault(_canonical_key(key), []).append(value)

    def set(self, key: str, value: str) -> None:
        self._values[_canonical_key(key)] = [value]

    def get(self, key: str, default: str = "") -> str:
        values = self._values.get(_canonical_key(key))
        return values[0] if values else default

    def get_all(self, key: str) -> list[str]:
        return list(self._values.get(_canonical_key(key), []))

    def delete(self, key: str) -> None:
        self._values.pop(_canonical_key(key), None)

    def items(self) -> Iterable[tuple[str, list[str]]]:
        return [(key, list(values)) for key, values in self._values.items()]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and _canonical_key(key) in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._values))

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Headers({self._values!r})"


class ResponseWriter:
    """Collects the status code, headers and body of an HTTP response."""

    def __init__(self) -> None:
        self.headers = Headers()
        self.code = 200
        self.body = bytearray()
        self.header_written = False
        self.flushed = False

    def write_header(self, code: int) -> None:
        """Set the status code; only the first call has an effect."""
        if self.header_written:
            return
        self.code = code
        self.header_written = True

    def write(self, data) -> int:
        """Append data to the body, sending a 200 status first if none was set."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        if not self.header_written:
            self.write_header(200)
        self.body.extend(data)
        return len(data)

    def flush(self) -> None:
        if not self.header_written:
            self.write_header(200)
        self.flushed = True


def get_geo_headers() -> list[str]:
    """Return the x-geo- header names."""
    return [
        "x-geo-org",
        "x-geo-country-code",
        "x-geo-country-name",
        "x-geo-region-code",
        "x-geo-region-name",
        "x-geo-city-name",
        "x-geo-postal-code",
        "x-geo-latitude",
        "x-geo-longitude",
    ]


def get_xb3_headers() -> list[str]:
    """Return the x-b3- tracing header names."""
    return [
        "x-b3-traceid",
        "x-b3-parentspanid",
        "x-b3-spanid",
        "x-b3-sampled",
    ]


def header(ctx: CallContext, key: str) -> Optional[str]:
    """Return the first value for key from the call metadata, or None."""
    values = header_n(ctx, key, 1)
    return values[0] if values else None


def header_n(ctx: CallContext, key: str, n: int) -> Optional[list[str]]:
    """Return the first n values for key (all if n < 0), or None.

    Values stored under the "grpcgateway-" prefixed key are included too.
    When fewer than n values exist, or n is 0, None is returned.
    """
    if n == 0:
        return None
    incoming = ctx.server_metadata.header_md if ctx.server_metadata is not None else ctx.incoming
    if incoming is None and ctx.outgoing is None:
        return None
    md = Metadata.join(incoming, ctx.outgoing)

    key = key.lower()
    values: list[str] = []
    found = False
    for candidate in (key, METADATA_PREFIX + key):
        if candidate in md:
            values.extend(md[candidate])
            found = True

    if not found:
        return None
    if n < 0 or len(values) == n:
        return values
    if len(values) < n:
        return None
    return values[:n]


def prefix_outgoing_header_matcher(key: str) -> Optional[str]:
    """Discard every header: no outgoing metadata key is forwarded."""
    return key if key.lower() in _OUTGOING_PASSTHROUGH else None


def default_header_matcher(key: str) -> Optional[str]:
    """Pass permanent HTTP headers with a prefix and strip the Grpc-Metadata- prefix."""
    key = _canonical_key(key)
    if key in _PERMANENT_HTTP_HEADERS:
        return METADATA_PREFIX + key
    if key.startswith(METADATA_HEADER_PREFIX):
        return key[len(METADATA_HEADER_PREFIX):]
    return None


def extended_default_header_matcher(*args: str) -> HeaderMatcher:
    """Match what the default matcher matches, plus the given header names."""
    custom = {name.lower() for name in args}

    def matcher(header_name: str) -> Optional[str]:
        mapped = default_header_matcher(header_name)
        if mapped is not None:
            return mapped
        return header_name if header_name.lower() in custom else None

    return matcher


def geo_ip_header_matcher() -> HeaderMatcher:
    """Match the x-geo- headers."""
    return extended_default_header_matcher(*get_geo_headers())


def request_id_header_matcher() -> HeaderMatcher:
    """Match the request-id header."""
    return extended_default_header_matcher("request-id")


def tracing_header_matcher() -> HeaderMatcher:
    """Match the x-b3- tracing headers."""
    return extended_default_header_matcher(*get_xb3_headers())


def atlas_default_header_matcher() -> HeaderMatcher:
    """Match geo, request id and tracing headers as well as the defaults."""
    return chain_header_matcher(
        geo_ip_header_matcher(),
        request_id_header_matcher(),
        tracing_header_matcher(),
    )


def chain_header_matcher(*args: HeaderMatcher) -> HeaderMatcher:
    """Return a matcher that tries each matcher in turn."""

    def matcher(header_name: str) -> Optional[str]:
        for candidate in args:
            mapped = candidate(header_name)
            if mapped is not None:
                return mapped
        return None

    return matcher


def forward_response_server_metadata(
    matcher: HeaderMatcher, writer: ResponseWriter, md: Optional[ServerMetadata]
) -> None:
    """Copy matched server header metadata into the response headers."""
    if md is None:
        return
    for key, values in md.header_md.items():
        mapped = matcher(key)
        if mapped is None:
            continue
        for value in values:
            writer.headers.add(mapped, value)


def forward_response_trailer_header(writer: ResponseWriter, md: Optional[ServerMetadata]) -> None:
    """Announce the trailer keys in the Trailer header, skipping message keys."""
    if md is None:
        return
    for key in md.trailer_md:
        if key.startswith("error-") or key.startswith("success-"):
            continue
        writer.headers.add("Trailer", _canonical_key(f"{METADATA_TRAILER_PREFIX}{key}"))


def forward_response_trailer(writer: ResponseWriter, md: Optional[ServerMetadata]) -> None:
    """Write every trailer value as a prefixed response header."""
    if md is None:
        return
    for key, values in md.trailer_md.items():
        for value in values:
            writer.headers.add(f"{METADATA_TRAILER_PREFIX}{key}", value)