"""
hmac_signing.secret_cache — Coalescing in-memory cache over AWS Secrets Manager.

Each (secret_name, region) key moves EMPTY -> PENDING -> READY. While a key is
PENDING every caller blocks on the same future, so there is at most one
outstanding GetSecretValue call per key. A failed fetch resets the key to
EMPTY and the failure is raised to every waiter; the next get() retries.

READY values never expire. clear() is the only way to force a refetch
(secret rotation, test isolation).

Secret values are never logged; only names and regions are.
"""

from __future__ import annotations

import base64
import threading
from collections.abc import Callable, Mapping
from concurrent.futures import Future
from typing import Any

import boto3
from aws_lambda_powertools import Logger

from hmac_signing.exceptions import SecretFetchError
from hmac_signing.models import SecretEntry, SecretState

logger = Logger(service="signing-lib")

DEFAULT_REGION = "us-east-1"

# (secret_name, region) -> GetSecretValue response
SecretFetcher = Callable[[str, str], Mapping[str, Any]]


# ---------------------------------------------------------------------------
# Secrets Manager collaborator
# ---------------------------------------------------------------------------


class SecretsManagerFetcher:
    """Calls GetSecretValue with one lazily created boto3 client per region."""

    def __init__(self) -> None:
        self._clients: dict[str, Any] = {}
        self._lock = threading.Lock()

    def client(self, region: str) -> Any:
        with self._lock:
            if region not in self._clients:
                self._clients[region] = boto3.client("secretsmanager", region_name=region)
            return self._clients[region]

    def __call__(self, secret_name: str, region: str) -> Mapping[str, Any]:
        return self.client(region).get_secret_value(SecretId=secret_name)


def decode_secret_value(response: Mapping[str, Any]) -> str:
    """Extract the secret text from a GetSecretValue response.

    SecretString is used as-is. SecretBinary arrives as bytes from boto3, or
    as base64 text from raw transports; both are decoded to UTF-8.
    Surrounding whitespace (trailing newlines from `aws secretsmanager
    put-secret-value --secret-string file://...`) is stripped.
    """
    secret_string = response.get("SecretString")
    if secret_string is not None:
        return str(secret_string).strip()

    secret_binary = response.get("SecretBinary")
    if secret_binary is None:
        raise ValueError("response contains neither SecretString nor SecretBinary")
    if isinstance(secret_binary, str):
        secret_binary = base64.b64decode(secret_binary)
    return bytes(secret_binary).decode("utf-8").strip()


# ---------------------------------------------------------------------------
# SecretCache
# ---------------------------------------------------------------------------


class SecretCache:
    """
    Thread-safe, coalescing secret cache.

    Attributes:
        _entries: (secret_name, region) -> SecretEntry
        _lock:    guards _entries; never held during a remote fetch
    """

    def __init__(
        self,
        fetch_secret: SecretFetcher | None = None,
        *,
        default_region: str = DEFAULT_REGION,
    ) -> None:
        self._fetch: SecretFetcher = (
            fetch_secret if fetch_secret is not None else SecretsManagerFetcher()
        )
        self._default_region = default_region
        self._entries: dict[tuple[str, str], SecretEntry] = {}
        self._lock = threading.Lock()

    def get(self, secret_name: str, region: str | None = None) -> str:
        """Return the secret value, fetching it at most once per key.

        Raises SecretFetchError when the store call fails; every caller
        waiting on the same fetch receives the same error.
        """
        key = (secret_name, region or self._default_region)
        future: Future[str] = Future()

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.state == SecretState.READY:
                return entry.value  # type: ignore[return-value]
            if entry is not None and entry.future is not None:
                future = entry.future
                owner = False
            else:
                entry = SecretEntry(key=key, state=SecretState.PENDING, future=future)
                self._entries[key] = entry
                owner = True

        if not owner:
            logger.debug("Waiting on in-flight secret fetch", extra={"secret_name": secret_name})
            return future.result()

        return self._populate(entry, future)

    def _populate(self, entry: SecretEntry, future: Future[str]) -> str:
        secret_name, region = entry.key
        try:
            value = decode_secret_value(self._fetch(secret_name, region))
        except Exception as exc:
            error = SecretFetchError(
                f"Failed to fetch secret from AWS Secrets Manager: {exc}",
                secret_name=secret_name,
                region=region,
            )
            with self._lock:
                if self._entries.get(entry.key) is entry:
                    del self._entries[entry.key]
            logger.error(
                "Secret fetch failed",
                extra={"secret_name": secret_name, "region": region, "error": str(exc)},
            )
            future.set_exception(error)
            raise error from exc

        with self._lock:
            # A clear() during the fetch starts a new epoch; don't resurrect the key.
            if self._entries.get(entry.key) is entry:
                entry.value = value
                entry.state = SecretState.READY
                entry.future = None
        logger.info("Secret fetched", extra={"secret_name": secret_name, "region": region})
        future.set_result(value)
        return value

    def clear(self, secret_name: str | None = None, region: str | None = None) -> None:
        """Forget one key when both name and region are given, else everything."""
        with self._lock:
            if secret_name is not None and region is not None:
                self._entries.pop((secret_name, region), None)
            else:
                self._entries.clear()

    def state(self, secret_name: str, region: str | None = None) -> SecretState:
        key = (secret_name, region or self._default_region)
        with self._lock:
            entry = self._entries.get(key)
            return entry.state if entry is not None else SecretState.EMPTY

    def __len__(self) -> int:
        """Number of READY entries."""
        with self._lock:
            return sum(1 for e in self._entries.values() if e.state == SecretState.READY)
