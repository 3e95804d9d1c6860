# restgate

Building blocks for a REST gateway that sits in front of an RPC service.
`restgate` maps RPC status codes to HTTP status codes. It wraps results and
errors in a consistent JSON envelope. It trims responses to the fields a client
asked for with `_fields`, and records which fields a request body actually
contained as field masks.

The package works on its own small model of a call: a `CallContext` holds the
incoming, outgoing and server metadata of one call. A `Request` holds the HTTP
method, URL and body. A `ResponseWriter` collects the status code, headers and
body that would be sent.

## Installation

```
pip install restgate
```

To run the test suite, install the test extra and run pytest:

```
pip install "restgate[test]"
pytest
```

## Modules

- `restgate.header`
  - Metadata containers: `Metadata` (with `pairs`, `append`, `join`),
    `ServerMetadata` and `CallContext` (with `set_header`, `set_trailer`).
  - The HTTP model: `Request`, `Headers` and `ResponseWriter`.
  - Header lookup: `header` and `header_n`. A key is also looked up with the
    `grpcgateway-` prefix.
  - Header matchers, each returning the mapped header name or `None`:
    `default_header_matcher`, `prefix_outgoing_header_matcher`,
    `extended_default_header_matcher`, `geo_ip_header_matcher`,
    `request_id_header_matcher`, `tracing_header_matcher`,
    `atlas_default_header_matcher` and `chain_header_matcher`.
  - Helpers that copy server metadata and trailers into response headers.
- `restgate.status`
  - The `Code` enum, which adds the success codes `CREATED`, `UPDATED`,
    `DELETED`, `LONG_RUNNING` and `PARTIAL_CONTENT` to the standard codes.
  - `Status` and `StatusError`.
  - Code conversion: `code_name`, `code`, `http_status_from_code`,
    `http_status` and `http_status_with_method`.
  - Status setters: `set_status`, `set_created`, `set_updated`,
    `set_deleted` and `set_running`.
  - `new_response_error_with_code` and `with_coded_success`.
  - Process-wide switches in `settings` (a `GatewaySettings`), and
    `include_status_details` to add `code` and `status` to JSON bodies.
- `restgate.messages`
  - `MessageWithFields` and `new_with_fields`.
  - `with_error`, `with_success` and `new_response_error` store messages in
    the call's trailer metadata.
  - `errors_and_success_from_context` reads them back from the server
    trailer.
- `restgate.errors`
  - `ProtoErrorHandler` writes errors as
    `{"error": [{"message": ...}, ...]}`, with `TargetInfo` details and
    `FieldInfo` fields.
  - `JSONMarshaler`, plus the ready-made handlers
    `PROTO_MESSAGE_ERROR_HANDLER` and `PROTO_STREAM_ERROR_HANDLER`.
- `restgate.response`
  - `ResponseForwarder` writes unary responses as JSON with stored errors and
    the success message. It writes streamed responses as delimited JSON
    chunks, with status 206 by default.
  - Ready-made forwarders: `FORWARD_RESPONSE_MESSAGE` and
    `FORWARD_RESPONSE_STREAM`.
- `restgate.fields`
  - `parse_field_selection`, `retain_fields` and `do_retain_fields`.
- `restgate.field_presence`
  - `FieldMask` and `field_mask_from_paths`.
  - `new_presence_annotator` turns the fields present in a JSON request body
    into metadata.
  - `presence_client_interceptor` fills a request's `FieldMask` field from
    that metadata.
- `restgate.middleware`
  - `set_collection_ops`, `get_collection_op`, `unset_op` and `get_op` read
    and write typed fields of dataclass messages.
  - `unary_server_interceptor` moves page info from a response into header
    metadata.
- `restgate.operator`
  - The query keys (`_filter`, `_order_by`, `_fields`, `_limit`, `_offset`,
    `_page_token`, `_fts`).
  - `metadata_annotator`, `set_page_info`, `DEFAULT_QUERY_FILTER` and
    `query_filter_with`.

## Examples

Map status codes:

```python
from restgate.status import Code, code_name, http_status_from_code

code_name(Code.UNIMPLEMENTED)          # "NOT_IMPLEMENTED"
http_status_from_code(Code.CANCELLED)  # 499
http_status_from_code(Code.CREATED)    # 201
```

Keep only the requested fields of a result:

```python
from restgate.fields import parse_field_selection, do_retain_fields

data = {"a": {"b": 1, "c": 2}, "z": 3}
do_retain_fields(data, parse_field_selection("a.b"))
# data == {"a": {"b": 1}}
```

Accept selected headers from incoming requests:

```python
from restgate.header import extended_default_header_matcher

matcher = extended_default_header_matcher("Request-ID")
matcher("Request-Id")    # "Request-Id"
matcher("Content-Type")  # "grpcgateway-Content-Type"
matcher("Other")         # None
```

Write a successful response:

```python
from restgate.errors import JSONMarshaler
from restgate.header import CallContext, Request, ResponseWriter, ServerMetadata
from restgate.response import FORWARD_RESPONSE_MESSAGE

ctx = CallContext(server_metadata=ServerMetadata())
writer = ResponseWriter()
FORWARD_RESPONSE_MESSAGE(
    ctx, JSONMarshaler(), writer, Request(method="POST", url="/users"),
    {"users": [{"name": "Poe"}]},
)
writer.code         # 201, since POST with no explicit status means "created"
bytes(writer.body)  # b'{"users":[{"name":"Poe"}]}'
```

Write an error response:

```python
from restgate.errors import PROTO_MESSAGE_ERROR_HANDLER, JSONMarshaler
from restgate.header import CallContext, ResponseWriter
from restgate.status import Code, StatusError

writer = ResponseWriter()
PROTO_MESSAGE_ERROR_HANDLER(
    CallContext(), JSONMarshaler(), writer, None, StatusError(Code.NOT_FOUND, "no such user")
)
writer.code         # 404
bytes(writer.body)  # b'{"error":[{"message":"no such user"}]}'
```

## What it does not do

`restgate` is a library of helpers, not a running gateway. It has no HTTP
server and no RPC client or transport. It does not register endpoints or route
requests. `ResponseWriter` only collects what would be sent. The package does
not parse `_order_by`, `_filter`, `_fts` or paging query values into request
objects. Of the query operators, only `_fields` selection is parsed, by
`restgate.fields`.