"""
hmac_signing.exceptions — Failures raised while producing a request signature.

None of these ever reach the backend: a request that fails to sign is
answered by the proxy itself and never forwarded unsigned.
"""


class SigningError(Exception):
    """Base class for every failure in the signing step."""


class SecretFetchError(SigningError):
    """
    Raised when the secret store is unreachable or denies access.

    The cache drops its in-flight marker before raising, so the next caller
    retries the fetch.

    Attributes:
        secret_name: Secrets Manager identifier that was requested.
        region:      AWS region the fetch targeted.
    """

    def __init__(self, message: str, *, secret_name: str, region: str) -> None:
        self.secret_name = secret_name
        self.region = region
        super().__init__(message)


class MissingTimestampError(SigningError):
    """Raised in caller-supplied timestamp mode when the timestamp header is absent."""

    def __init__(self, header: str) -> None:
        self.header = header
        super().__init__(f"{header} header is required")
