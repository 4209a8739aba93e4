"""
proxy.errors — Error taxonomy of the proxy service.

Every ProxyError is rendered as {"error": <label>, "message": <detail>} at its
status code. Backend non-2xx responses on the catch-all route are not errors:
they are relayed untouched and never pass through this module.
"""

from __future__ import annotations


class ConfigurationError(Exception):
    """A required setting is missing or invalid. Fatal at startup."""


class ProxyError(Exception):
    """Base for failures answered by the proxy itself."""

    status_code: int = 500
    error: str = "Internal Server Error"

    def __init__(self, message: str, *, status_code: int | None = None, error: str | None = None):
        if status_code is not None:
            self.status_code = status_code
        if error is not None:
            self.error = error
        self.message = message
        super().__init__(message)


# ---------------------------------------------------------------------------
# Received / Signing
# ---------------------------------------------------------------------------


class BadRequestError(ProxyError):
    status_code = 400
    error = "Bad Request"


class InvalidBodyError(BadRequestError):
    pass


class SignatureCreationError(ProxyError):
    status_code = 500
    error = "Failed to create signature"


# ---------------------------------------------------------------------------
# Forwarding
# ---------------------------------------------------------------------------


class UpstreamConnectError(ProxyError):
    status_code = 502
    error = "Bad Gateway"

    def __init__(self, message: str = "Unable to connect to target server") -> None:
        super().__init__(message)


class UpstreamTimeoutError(ProxyError):
    status_code = 504
    error = "Gateway Timeout"

    def __init__(self, message: str = "Request to target server timed out") -> None:
        super().__init__(message)


class UpstreamTransportError(ProxyError):
    status_code = 500
    error = "Internal Server Error"


class UpstreamError(ProxyError):
    """Backend answered non-2xx to a call the proxy made on its own behalf."""

    error = "Identity lookup failed"

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message, status_code=status_code)


# ---------------------------------------------------------------------------
# Token mint
# ---------------------------------------------------------------------------


class IdentityRecordError(ProxyError):
    status_code = 502
    error = "Bad Gateway"


class TokenConfigurationError(ProxyError):
    status_code = 500
    error = "Configuration error"


class FunctionInvokeError(ProxyError):
    status_code = 500
    error = "Token generation failed"


class FunctionNotFoundError(FunctionInvokeError):
    pass


class InvalidFunctionParameterError(FunctionInvokeError):
    pass
