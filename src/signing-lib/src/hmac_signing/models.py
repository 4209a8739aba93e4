"""
hmac_signing.models — Value types shared by the signer and the secret cache.

Signing profiles:
    hmac    — x-hmac-signature / x-hmac-timestamp, timestamp stamped by the proxy
    legacy  — X-Signature / X-Timestamp, timestamp supplied by the caller

The header pair and the timestamp source are independent; a profile can be
rebuilt with a different source via get_profile(name, timestamp_source=...).
"""

from __future__ import annotations

import dataclasses
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import StrEnum

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TimestampSource(StrEnum):
    SERVER = "server"
    CALLER = "caller"


class SecretState(StrEnum):
    EMPTY = "empty"
    PENDING = "pending"
    READY = "ready"


# ---------------------------------------------------------------------------
# Signing profiles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SigningProfile:
    """Which headers carry the signature/timestamp and who supplies the timestamp."""

    name: str
    signature_header: str
    timestamp_header: str
    timestamp_source: TimestampSource


HMAC_PROFILE = SigningProfile(
    name="hmac",
    signature_header="x-hmac-signature",
    timestamp_header="x-hmac-timestamp",
    timestamp_source=TimestampSource.SERVER,
)

LEGACY_PROFILE = SigningProfile(
    name="legacy",
    signature_header="X-Signature",
    timestamp_header="X-Timestamp",
    timestamp_source=TimestampSource.CALLER,
)

PROFILES: dict[str, SigningProfile] = {p.name: p for p in (HMAC_PROFILE, LEGACY_PROFILE)}


def get_profile(name: str, timestamp_source: str | None = None) -> SigningProfile:
    """Return the named profile, optionally with its timestamp source overridden.

    Raises ValueError for an unknown profile name or timestamp source.
    """
    try:
        profile = PROFILES[name.strip().lower()]
    except KeyError:
        raise ValueError(
            f"Unknown signing profile {name!r} (expected one of {sorted(PROFILES)})"
        ) from None
    if timestamp_source:
        source = TimestampSource(timestamp_source.strip().lower())
        profile = dataclasses.replace(profile, timestamp_source=source)
    return profile


# ---------------------------------------------------------------------------
# Signing values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CanonicalRequest:
    """The three fields covered by the signature. path_and_query always starts with '/'."""

    method: str
    path_and_query: str
    timestamp: str

    def to_string(self) -> str:
        return f"{self.method}\n{self.path_and_query}\n{self.timestamp}\n"


@dataclass(frozen=True)
class SignedRequest:
    canonical: CanonicalRequest
    signature: str
    profile: SigningProfile

    @property
    def headers(self) -> dict[str, str]:
        """Headers to inject into the outbound request."""
        return {
            self.profile.signature_header: self.signature,
            self.profile.timestamp_header: self.canonical.timestamp,
        }


# ---------------------------------------------------------------------------
# Secret cache entries
# Key: (secret_name, region)
# ---------------------------------------------------------------------------


@dataclass
class SecretEntry:
    """Cache slot for one secret. Only SecretCache mutates these."""

    key: tuple[str, str]
    value: str | None = None
    state: SecretState = SecretState.EMPTY
    future: Future[str] | None = field(default=None, repr=False, compare=False)
