"""
proxy.forwarding — Request capture, outbound construction and response relay.

Pipeline pieces used by ProxyEngine:
  read_inbound()            Received:   capture method, raw path+query, headers, typed body
  build_outbound_request()  Forwarding: pure; header transforms + signature injection
  send_outbound()           Forwarding: requests call, whole-exchange deadline, failures mapped
  relay_response()          Relayed:    rebuild the upstream response minus hop-specific headers

Header rules:
  outbound  drop host, content-length, transfer-encoding; replace any inbound
            copy of the signature/timestamp headers; keep everything else
  relayed   drop connection, transfer-encoding, content-encoding, content-length
            (content-length is kept for HEAD, 204 and 304, where the body is empty);
            repeated headers such as Set-Cookie stay separate lines
"""

from __future__ import annotations

import json
import time
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import requests
from hmac_signing import SignedRequest
from requests.structures import CaseInsensitiveDict
from starlette.requests import Request
from starlette.responses import Response
from urllib3.exceptions import MaxRetryError, NewConnectionError, ReadTimeoutError

from src.proxy.errors import (
    InvalidBodyError,
    ProxyError,
    UpstreamConnectError,
    UpstreamTimeoutError,
    UpstreamTransportError,
)

_OUTBOUND_DROP = frozenset({"host", "content-length", "transfer-encoding"})
_RELAY_DROP = frozenset({"connection", "transfer-encoding", "content-encoding", "content-length"})
_EMPTY_BODY_STATUSES = frozenset({204, 304})
_CHUNK_SIZE = 8192


# ---------------------------------------------------------------------------
# Received
# ---------------------------------------------------------------------------


class BodyKind(StrEnum):
    EMPTY = "empty"
    JSON = "json"
    TEXT = "text"
    BINARY = "binary"


@dataclass(frozen=True)
class RequestBody:
    kind: BodyKind
    content: Any = None
    charset: str = "utf-8"

    @classmethod
    def empty(cls) -> RequestBody:
        return cls(BodyKind.EMPTY)


@dataclass(frozen=True)
class InboundRequest:
    method: str
    path_and_query: str
    headers: Mapping[str, str]
    body: RequestBody


def _media_type(content_type: str) -> tuple[str, str | None]:
    """Split 'text/plain; charset=latin-1' into ('text/plain', 'latin-1')."""
    parts = [p.strip() for p in content_type.split(";")]
    charset = None
    for param in parts[1:]:
        name, _, value = param.partition("=")
        if name.strip().lower() == "charset" and value:
            charset = value.strip().strip('"')
    return parts[0].lower(), charset


def parse_body(raw: bytes, content_type: str | None) -> RequestBody:
    """Type the body by content type: JSON, text, or raw bytes."""
    if not raw:
        return RequestBody.empty()

    media_type, charset = _media_type(content_type or "")
    if media_type == "application/json" or media_type.endswith("+json"):
        try:
            return RequestBody(BodyKind.JSON, json.loads(raw.decode(charset or "utf-8")))
        except (LookupError, ValueError) as exc:
            raise InvalidBodyError(f"Invalid JSON body: {exc}") from exc
    if media_type.startswith("text/"):
        try:
            return RequestBody(BodyKind.TEXT, raw.decode(charset or "utf-8"), charset or "utf-8")
        except (UnicodeDecodeError, LookupError) as exc:
            raise InvalidBodyError(f"Undecodable text body: {exc}") from exc
    return RequestBody(BodyKind.BINARY, raw)


def raw_path_and_query(request: Request) -> str:
    """The request target exactly as the client sent it (no percent-decoding)."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = request.url.path
    query = request.scope.get("query_string", b"").decode("latin-1")
    return f"{path}?{query}" if query else path


async def read_inbound(request: Request) -> InboundRequest:
    raw = await request.body()
    return InboundRequest(
        method=request.method.upper(),
        path_and_query=raw_path_and_query(request),
        headers=CaseInsensitiveDict(request.headers.items()),
        body=parse_body(raw, request.headers.get("content-type")),
    )


# ---------------------------------------------------------------------------
# Forwarding
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OutboundRequest:
    method: str
    url: str
    headers: CaseInsensitiveDict
    body: RequestBody
    timeout: float


def build_outbound_request(
    inbound: InboundRequest, signed: SignedRequest, base_url: str, timeout: float
) -> OutboundRequest:
    headers: CaseInsensitiveDict = CaseInsensitiveDict()
    for name, value in inbound.headers.items():
        if name.lower() not in _OUTBOUND_DROP:
            headers[name] = value
    # CaseInsensitiveDict replaces inbound copies regardless of casing
    for name, value in signed.headers.items():
        headers[name] = value

    return OutboundRequest(
        method=inbound.method,
        url=f"{base_url}{signed.canonical.path_and_query}",
        headers=headers,
        body=inbound.body,
        timeout=timeout,
    )


def _body_kwargs(body: RequestBody) -> dict[str, Any]:
    if body.kind == BodyKind.JSON:
        return {"data": json.dumps(body.content).encode("utf-8")}
    if body.kind == BodyKind.TEXT:
        return {"data": body.content.encode(body.charset)}
    if body.kind == BodyKind.BINARY:
        return {"data": body.content}
    return {}


def _is_connect_failure(exc: requests.ConnectionError) -> bool:
    """True when no connection was established (refused, DNS failure)."""
    for arg in exc.args:
        reason = arg.reason if isinstance(arg, MaxRetryError) else arg
        if isinstance(reason, (NewConnectionError, ConnectionRefusedError)):
            return True
    cause = exc.__cause__ or exc.__context__
    return isinstance(cause, (NewConnectionError, ConnectionRefusedError))


def map_transport_error(exc: requests.RequestException) -> ProxyError:
    # ConnectTimeout is both a Timeout and a ConnectionError; timeouts win.
    # A read timeout while streaming the body surfaces as a ConnectionError.
    if isinstance(exc, requests.Timeout) or any(
        isinstance(arg, ReadTimeoutError) for arg in exc.args
    ):
        return UpstreamTimeoutError()
    if isinstance(exc, requests.ConnectionError) and _is_connect_failure(exc):
        return UpstreamConnectError()
    return UpstreamTransportError(str(exc))


@dataclass(frozen=True)
class UpstreamResponse:
    """A fully read backend response. header_items keeps repeated headers in order."""

    status_code: int
    reason: str
    header_items: list[tuple[str, str]]
    content: bytes

    @property
    def headers(self) -> CaseInsensitiveDict:
        return CaseInsensitiveDict(self.header_items)

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.content)


def _header_items(response: requests.Response) -> list[tuple[str, str]]:
    """Upstream headers as sent. requests folds repeats; urllib3 keeps them."""
    raw_headers = getattr(response.raw, "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "iteritems"):
        return list(raw_headers.iteritems())
    return list(response.headers.items())


def _read_body(response: requests.Response, deadline: float) -> bytes:
    if time.monotonic() > deadline:
        raise UpstreamTimeoutError()
    chunks = []
    for chunk in response.iter_content(_CHUNK_SIZE):
        chunks.append(chunk)
        if time.monotonic() > deadline:
            raise UpstreamTimeoutError()
    return b"".join(chunks)


def send_outbound(outbound: OutboundRequest) -> UpstreamResponse:
    """Send the request and read the whole response within outbound.timeout.

    Any status code is a result; only transport failures and the deadline raise.
    requests' own timeout bounds each socket operation, the deadline bounds the
    exchange.
    """
    deadline = time.monotonic() + outbound.timeout
    try:
        response = requests.request(
            outbound.method,
            outbound.url,
            headers=outbound.headers,
            timeout=outbound.timeout,
            allow_redirects=False,
            stream=True,
            **_body_kwargs(outbound.body),
        )
        try:
            content = _read_body(response, deadline)
        finally:
            response.close()
    except requests.RequestException as exc:
        raise map_transport_error(exc) from exc

    return UpstreamResponse(
        status_code=response.status_code,
        reason=response.reason or "",
        header_items=_header_items(response),
        content=content,
    )


# ---------------------------------------------------------------------------
# Relayed
# ---------------------------------------------------------------------------


def relay_headers(
    header_items: list[tuple[str, str]], *, keep_length: bool = False
) -> list[tuple[str, str]]:
    drop = _RELAY_DROP - {"content-length"} if keep_length else _RELAY_DROP
    return [(name, value) for name, value in header_items if name.lower() not in drop]


def relay_response(upstream: UpstreamResponse, method: str) -> Response:
    """Status and body verbatim; headers minus the hop-specific ones."""
    keep_length = method == "HEAD" or upstream.status_code in _EMPTY_BODY_STATUSES
    response = Response(content=upstream.content, status_code=upstream.status_code)
    for name, value in relay_headers(upstream.header_items, keep_length=keep_length):
        if name.lower() == "content-length":
            response.headers[name] = value
        else:
            response.headers.append(name, value)
    return response
