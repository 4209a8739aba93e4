"""
hmac_signing.signer — Canonical string construction and HMAC-SHA256 signing.

Canonical string (the wire contract with the backend):

    <METHOD>\\n<PATH_AND_QUERY>\\n<TIMESTAMP>\\n

  - METHOD is upper-cased; nothing else is normalised.
  - PATH_AND_QUERY is the raw request target, query string verbatim,
    prefixed with '/' when the caller's URL lacks one.
  - The request body is not part of the signed material.

Signature = lowercase hex HMAC-SHA256(secret, canonical string).
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Protocol

from aws_lambda_powertools import Logger

from hmac_signing.exceptions import MissingTimestampError
from hmac_signing.models import CanonicalRequest, SignedRequest, SigningProfile, TimestampSource

logger = Logger(service="signing-lib")


class SecretSource(Protocol):
    def get(self, secret_name: str, region: str | None = None) -> str: ...


# ---------------------------------------------------------------------------
# Pure signing functions
# ---------------------------------------------------------------------------


def normalise_path(raw_url: str) -> str:
    """Return the path+query with a guaranteed leading '/'."""
    return raw_url if raw_url.startswith("/") else f"/{raw_url}"


def build_canonical_request(method: str, path_and_query: str, timestamp: str) -> CanonicalRequest:
    return CanonicalRequest(
        method=method.upper(),
        path_and_query=normalise_path(path_and_query),
        timestamp=timestamp,
    )


def build_canonical_string(method: str, path_and_query: str, timestamp: str) -> str:
    return build_canonical_request(method, path_and_query, timestamp).to_string()


def compute_signature(secret: str, canonical_string: str) -> str:
    return hmac.new(
        secret.encode("utf-8"), canonical_string.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def sign(secret: str, method: str, path_and_query: str, timestamp: str) -> str:
    """Sign one request. Same inputs always produce the same 64-char hex digest."""
    return compute_signature(secret, build_canonical_string(method, path_and_query, timestamp))


def verify_signature(
    secret: str, method: str, path_and_query: str, timestamp: str, signature: str
) -> bool:
    """Backend-side check: recompute the signature and compare in constant time."""
    expected = sign(secret, method, path_and_query, timestamp)
    return hmac.compare_digest(expected, signature.lower())


def utc_timestamp(now: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2026-01-01T00:00:00.000Z."""
    moment = now or datetime.now(UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def header_value(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup. Empty values count as absent."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted and value:
            return value
    return None


# ---------------------------------------------------------------------------
# RequestSigner: the signing step of the proxy pipeline
# ---------------------------------------------------------------------------


class RequestSigner:
    """
    Produces a SignedRequest for one inbound request under a signing profile.

    The timestamp is resolved before the secret is requested, so a request
    rejected for a missing caller timestamp never touches the secret store.
    """

    def __init__(
        self,
        profile: SigningProfile,
        secret_source: SecretSource,
        secret_name: str,
        region: str,
        *,
        clock: Callable[[], str] = utc_timestamp,
    ) -> None:
        self.profile = profile
        self._secrets = secret_source
        self._secret_name = secret_name
        self._region = region
        self._clock = clock

    def resolve_timestamp(self, headers: Mapping[str, str]) -> str:
        if self.profile.timestamp_source == TimestampSource.SERVER:
            return self._clock()

        timestamp = header_value(headers, self.profile.timestamp_header)
        if timestamp is None:
            raise MissingTimestampError(self.profile.timestamp_header)
        return timestamp

    def sign_request(
        self, method: str, path_and_query: str, headers: Mapping[str, str]
    ) -> SignedRequest:
        timestamp = self.resolve_timestamp(headers)
        secret = self._secrets.get(self._secret_name, self._region)

        canonical = build_canonical_request(method, path_and_query, timestamp)
        signature = compute_signature(secret, canonical.to_string())
        logger.info(
            "Request signed",
            extra={
                "method": canonical.method,
                "path": canonical.path_and_query,
                "signature_prefix": signature[:8],
                "profile": self.profile.name,
            },
        )
        return SignedRequest(canonical=canonical, signature=signature, profile=self.profile)
