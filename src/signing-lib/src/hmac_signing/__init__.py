"""
hmac_signing — HMAC-SHA256 request signing and coalescing secret cache.

Shared by the proxy (signing side) and backends/mocks (verification side).
"""

from hmac_signing.exceptions import MissingTimestampError, SecretFetchError, SigningError
from hmac_signing.models import (
    HMAC_PROFILE,
    LEGACY_PROFILE,
    CanonicalRequest,
    SecretState,
    SignedRequest,
    SigningProfile,
    TimestampSource,
    get_profile,
)
from hmac_signing.secret_cache import SecretCache, SecretsManagerFetcher
from hmac_signing.signer import (
    RequestSigner,
    build_canonical_string,
    compute_signature,
    sign,
    utc_timestamp,
    verify_signature,
)

__all__ = [
    "HMAC_PROFILE",
    "LEGACY_PROFILE",
    "CanonicalRequest",
    "MissingTimestampError",
    "RequestSigner",
    "SecretCache",
    "SecretFetchError",
    "SecretState",
    "SecretsManagerFetcher",
    "SignedRequest",
    "SigningError",
    "SigningProfile",
    "TimestampSource",
    "build_canonical_string",
    "compute_signature",
    "get_profile",
    "sign",
    "utc_timestamp",
    "verify_signature",
]
