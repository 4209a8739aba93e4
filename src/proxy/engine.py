"""
proxy.engine — The per-request signing proxy pipeline.

    Received -> Signing -> Forwarding -> Relayed | ErrorMapped

Signing failures raise before any outbound call, so nothing unsigned ever
reaches the backend. Forwarding never raises on upstream status codes; only
transport failures become ProxyErrors (502 / 504 / 500).

No retries: a failed request is answered once and retrying is the caller's call.
"""

from __future__ import annotations

import time
from collections.abc import Mapping

from aws_lambda_powertools import Logger
from hmac_signing import MissingTimestampError, RequestSigner, SignedRequest
from requests.structures import CaseInsensitiveDict

from src.proxy.errors import BadRequestError, ProxyError, SignatureCreationError
from src.proxy.forwarding import (
    InboundRequest,
    RequestBody,
    UpstreamResponse,
    build_outbound_request,
    send_outbound,
)

logger = Logger(service="hmac-proxy")


class ProxyEngine:
    def __init__(self, signer: RequestSigner, base_url: str, timeout: float) -> None:
        self.signer = signer
        self.base_url = base_url
        self.timeout = timeout

    def sign(self, inbound: InboundRequest) -> SignedRequest:
        """Signing step. Returns a value; never mutates the inbound request."""
        try:
            return self.signer.sign_request(
                inbound.method, inbound.path_and_query, inbound.headers
            )
        except MissingTimestampError as exc:
            logger.warning("Rejected request without timestamp", extra={"header": exc.header})
            raise BadRequestError(str(exc)) from exc
        except Exception as exc:
            logger.exception(
                "Error creating signature",
                extra={"method": inbound.method, "path": inbound.path_and_query},
            )
            raise SignatureCreationError(str(exc)) from exc

    def forward(self, inbound: InboundRequest) -> UpstreamResponse:
        signed = self.sign(inbound)
        outbound = build_outbound_request(inbound, signed, self.base_url, self.timeout)

        start_time = time.time()
        logger.info("Proxying request", extra={"method": outbound.method, "url": outbound.url})
        try:
            response = send_outbound(outbound)
        except ProxyError as exc:
            logger.error(
                "Error proxying request",
                extra={
                    "method": outbound.method,
                    "url": outbound.url,
                    "status_code": exc.status_code,
                    "error": exc.message,
                },
            )
            raise

        latency_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "Upstream responded",
            extra={
                "method": outbound.method,
                "url": outbound.url,
                "status_code": response.status_code,
                "latency_ms": latency_ms,
            },
        )
        return response

    def call_backend(
        self, method: str, path_and_query: str, headers: Mapping[str, str] | None = None
    ) -> UpstreamResponse:
        """Signed call issued by the proxy itself (no inbound body)."""
        inbound = InboundRequest(
            method=method.upper(),
            path_and_query=path_and_query,
            headers=CaseInsensitiveDict(headers or {}),
            body=RequestBody.empty(),
        )
        return self.forward(inbound)
