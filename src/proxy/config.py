"""
proxy.config — Environment-driven settings for the signing proxy.

Required:
    TARGET_BASE_URL    backend base URL, e.g. https://backend.internal
    HMAC_SECRET_NAME   Secrets Manager id of the HMAC signing secret

Optional (defaults in ProxySettings):
    AWS_REGION, PORT, SIGNING_PROFILE, TIMESTAMP_SOURCE,
    UPSTREAM_TIMEOUT_SECONDS, JWT_SECRET_NAME, TOKEN_FUNCTION_NAME,
    IDENTITY_LOOKUP_PATH

load_settings() raises ConfigurationError on anything missing or malformed;
the process must not start serving traffic in that case.
"""

from __future__ import annotations

import math
import os
from collections.abc import Mapping
from dataclasses import dataclass

from hmac_signing import HMAC_PROFILE, SigningProfile, get_profile

from src.proxy.errors import ConfigurationError

DEFAULT_REGION = "us-east-1"
DEFAULT_PORT = 3000
UPSTREAM_TIMEOUT_SECONDS = 30.0
DEFAULT_IDENTITY_LOOKUP_PATH = "/api/users/national-id/{national_id}"


@dataclass(frozen=True)
class ProxySettings:
    target_base_url: str
    hmac_secret_name: str
    aws_region: str = DEFAULT_REGION
    port: int = DEFAULT_PORT
    signing_profile: SigningProfile = HMAC_PROFILE
    upstream_timeout_seconds: float = UPSTREAM_TIMEOUT_SECONDS
    jwt_secret_name: str | None = None
    token_function_name: str | None = None
    identity_lookup_path: str = DEFAULT_IDENTITY_LOOKUP_PATH


def _required(environ: Mapping[str, str], name: str) -> str:
    value = environ.get(name, "").strip()
    if not value:
        raise ConfigurationError(f"{name} environment variable is required")
    return value


def _optional(environ: Mapping[str, str], name: str) -> str | None:
    value = environ.get(name, "").strip()
    return value or None


def _number(environ: Mapping[str, str], name: str, default: float, cast: type) -> float:
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
    if not math.isfinite(value) or value <= 0:
        raise ConfigurationError(f"{name} must be a positive finite number, got {raw!r}")
    return value


def load_settings(environ: Mapping[str, str] | None = None) -> ProxySettings:
    """Resolve ProxySettings from the environment (os.environ by default)."""
    env = os.environ if environ is None else environ

    try:
        profile = get_profile(
            env.get("SIGNING_PROFILE", "").strip() or HMAC_PROFILE.name,
            timestamp_source=_optional(env, "TIMESTAMP_SOURCE"),
        )
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc

    lookup_path = _optional(env, "IDENTITY_LOOKUP_PATH") or DEFAULT_IDENTITY_LOOKUP_PATH
    if "{national_id}" not in lookup_path:
        raise ConfigurationError("IDENTITY_LOOKUP_PATH must contain the {national_id} placeholder")

    return ProxySettings(
        target_base_url=_required(env, "TARGET_BASE_URL").rstrip("/"),
        hmac_secret_name=_required(env, "HMAC_SECRET_NAME"),
        aws_region=_optional(env, "AWS_REGION") or DEFAULT_REGION,
        port=int(_number(env, "PORT", DEFAULT_PORT, int)),
        signing_profile=profile,
        upstream_timeout_seconds=float(
            _number(env, "UPSTREAM_TIMEOUT_SECONDS", UPSTREAM_TIMEOUT_SECONDS, float)
        ),
        jwt_secret_name=_optional(env, "JWT_SECRET_NAME"),
        token_function_name=_optional(env, "TOKEN_FUNCTION_NAME"),
        identity_lookup_path=lookup_path,
    )
