from __future__ import annotations

import time
from types import SimpleNamespace

import pytest
import requests
from hmac_signing import HMAC_PROFILE, CanonicalRequest, SignedRequest
from requests.structures import CaseInsensitiveDict
from urllib3 import HTTPHeaderDict
from urllib3.exceptions import MaxRetryError, NewConnectionError, ProtocolError, ReadTimeoutError

from src.proxy.errors import (
    InvalidBodyError,
    UpstreamConnectError,
    UpstreamTimeoutError,
    UpstreamTransportError,
)
from src.proxy.forwarding import (
    BodyKind,
    InboundRequest,
    RequestBody,
    _body_kwargs,
    _header_items,
    _read_body,
    build_outbound_request,
    map_transport_error,
    parse_body,
    relay_headers,
)

TIMESTAMP = "2026-01-01T00:00:00.000Z"


def _signed(method: str = "GET", path: str = "/api/users") -> SignedRequest:
    return SignedRequest(
        canonical=CanonicalRequest(method, path, TIMESTAMP),
        signature="a" * 64,
        profile=HMAC_PROFILE,
    )


def _inbound(headers: dict[str, str], path: str = "/api/users") -> InboundRequest:
    return InboundRequest(
        method="GET",
        path_and_query=path,
        headers=CaseInsensitiveDict(headers),
        body=RequestBody.empty(),
    )


# ---------------------------------------------------------------------------
# parse_body
# ---------------------------------------------------------------------------


def test_empty_body() -> None:
    assert parse_body(b"", "application/json").kind == BodyKind.EMPTY


@pytest.mark.parametrize(
    "content_type",
    ["application/json", "application/json; charset=utf-8", "application/vnd.api+json"],
)
def test_json_body(content_type: str) -> None:
    body = parse_body(b'{"name": "John"}', content_type)

    assert body.kind == BodyKind.JSON
    assert body.content == {"name": "John"}


def test_invalid_json_raises() -> None:
    with pytest.raises(InvalidBodyError, match="Invalid JSON body"):
        parse_body(b"{not json", "application/json")


def test_text_body_keeps_charset() -> None:
    body = parse_body("café".encode("latin-1"), "text/plain; charset=latin-1")

    assert body.kind == BodyKind.TEXT
    assert body.content == "café"
    assert _body_kwargs(body) == {"data": "café".encode("latin-1")}


@pytest.mark.parametrize("content_type", [None, "application/octet-stream", "image/png"])
def test_other_bodies_are_binary(content_type: str | None) -> None:
    body = parse_body(b"\x00\x01\x02", content_type)

    assert body.kind == BodyKind.BINARY
    assert _body_kwargs(body) == {"data": b"\x00\x01\x02"}


def test_empty_body_sends_nothing() -> None:
    assert _body_kwargs(RequestBody.empty()) == {}


@pytest.mark.parametrize("raw", [b"null", b"0", b"false", b"\"\""])
def test_falsy_json_bodies_are_still_sent(raw: bytes) -> None:
    body = parse_body(raw, "application/json")

    assert _body_kwargs(body) == {"data": raw}


# ---------------------------------------------------------------------------
# build_outbound_request
# ---------------------------------------------------------------------------


def test_outbound_header_rules() -> None:
    inbound = _inbound(
        {
            "Host": "proxy.local",
            "Content-Length": "12",
            "Transfer-Encoding": "chunked",
            "X-HMAC-Signature": "forged",
            "Authorization": "Bearer abc",
            "X-Custom": "1",
        }
    )

    outbound = build_outbound_request(inbound, _signed(), "https://backend", 30)

    assert outbound.url == "https://backend/api/users"
    assert outbound.timeout == 30
    headers = outbound.headers
    assert "host" not in headers
    assert "content-length" not in headers
    assert "transfer-encoding" not in headers
    assert headers["x-hmac-signature"] == "a" * 64
    assert headers["x-hmac-timestamp"] == TIMESTAMP
    assert headers["authorization"] == "Bearer abc"
    assert headers["x-custom"] == "1"


def test_outbound_does_not_mutate_inbound() -> None:
    inbound = _inbound({"Host": "proxy.local"})

    build_outbound_request(inbound, _signed(), "https://backend", 30)

    assert inbound.headers["host"] == "proxy.local"
    assert "x-hmac-signature" not in inbound.headers


def test_outbound_url_uses_signed_target() -> None:
    path = "/api/users?page=1&limit=10"

    outbound = build_outbound_request(_inbound({}, path), _signed(path=path), "https://b", 5)

    assert outbound.url == "https://b/api/users?page=1&limit=10"


# ---------------------------------------------------------------------------
# Transport errors
# ---------------------------------------------------------------------------


def test_refused_connection_maps_to_502() -> None:
    reason = NewConnectionError(None, "Connection refused")
    exc = requests.ConnectionError(MaxRetryError(None, "/", reason=reason))

    assert isinstance(map_transport_error(exc), UpstreamConnectError)


def test_timeouts_map_to_504() -> None:
    assert isinstance(map_transport_error(requests.ReadTimeout()), UpstreamTimeoutError)
    assert isinstance(map_transport_error(requests.ConnectTimeout()), UpstreamTimeoutError)


def test_dropped_connection_maps_to_500_with_message() -> None:
    exc = requests.ConnectionError(ProtocolError("Connection aborted."))

    error = map_transport_error(exc)

    assert isinstance(error, UpstreamTransportError)
    assert error.status_code == 500
    assert "Connection aborted" in error.message


def test_read_timeout_while_streaming_maps_to_504() -> None:
    exc = requests.ConnectionError(ReadTimeoutError(None, "/", "Read timed out."))

    assert isinstance(map_transport_error(exc), UpstreamTimeoutError)


# ---------------------------------------------------------------------------
# relay_headers
# ---------------------------------------------------------------------------


UPSTREAM_HEADERS = [
    ("Connection", "keep-alive"),
    ("Transfer-Encoding", "chunked"),
    ("Content-Encoding", "gzip"),
    ("Content-Length", "42"),
    ("Content-Type", "application/json"),
    ("ETag", "abc123"),
    ("Set-Cookie", "a=1"),
    ("Set-Cookie", "b=2"),
]


def test_relay_strips_hop_headers_only() -> None:
    assert relay_headers(UPSTREAM_HEADERS) == [
        ("Content-Type", "application/json"),
        ("ETag", "abc123"),
        ("Set-Cookie", "a=1"),
        ("Set-Cookie", "b=2"),
    ]


def test_relay_keeps_length_when_asked() -> None:
    relayed = relay_headers(UPSTREAM_HEADERS, keep_length=True)

    assert ("Content-Length", "42") in relayed
    assert ("Connection", "keep-alive") not in relayed


# ---------------------------------------------------------------------------
# Response reading
# ---------------------------------------------------------------------------


class _TrickleRaw:
    """File-like upstream body that hands out a few bytes per read, slowly."""

    def __init__(self, reads: int, delay: float) -> None:
        self.reads = reads
        self.delay = delay

    def read(self, _amt: int) -> bytes:
        if self.reads == 0:
            return b""
        self.reads -= 1
        time.sleep(self.delay)
        return b"x"


def _streamed(raw: object) -> requests.Response:
    response = requests.Response()
    response.status_code = 200
    response.raw = raw
    return response


def test_read_body_collects_all_chunks() -> None:
    body = _read_body(_streamed(_TrickleRaw(reads=3, delay=0)), time.monotonic() + 5)

    assert body == b"xxx"


def test_read_body_enforces_deadline() -> None:
    response = _streamed(_TrickleRaw(reads=50, delay=0.05))
    started = time.monotonic()

    with pytest.raises(UpstreamTimeoutError):
        _read_body(response, started + 0.2)

    assert time.monotonic() - started < 1.0
    assert response.raw.reads > 0


def test_read_body_past_deadline_reads_nothing() -> None:
    response = _streamed(_TrickleRaw(reads=1, delay=0))

    with pytest.raises(UpstreamTimeoutError):
        _read_body(response, time.monotonic() - 1)

    assert response.raw.reads == 1


def test_header_items_keep_repeats() -> None:
    raw_headers = HTTPHeaderDict()
    raw_headers.add("Set-Cookie", "a=1")
    raw_headers.add("Set-Cookie", "b=2")
    response = _streamed(SimpleNamespace(headers=raw_headers))

    assert _header_items(response) == [("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")]


def test_header_items_fall_back_to_merged_headers() -> None:
    response = requests.Response()
    response.headers = CaseInsensitiveDict({"ETag": "abc"})

    assert _header_items(response) == [("ETag", "abc")]
