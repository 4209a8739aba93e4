"""
proxy.token_mint — POST /auth/token/{national_id}: resolve an identity, mint a JWT.

Steps:
  (a) signed GET to the backend identity lookup  -> backend status/message on failure
  (b) fetch the JWT signing secret (SecretCache)  -> 500 "Configuration error"
  (c) invoke the token function synchronously     -> 500 "Token generation failed"
  (d) relay the function's statusCode and body

Missing JWT_SECRET_NAME / TOKEN_FUNCTION_NAME is checked before (a).
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from aws_lambda_powertools import Logger
from hmac_signing import SecretCache, SecretFetchError
from hmac_signing.signer import header_value
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.proxy.config import ProxySettings
from src.proxy.engine import ProxyEngine
from src.proxy.errors import IdentityRecordError, TokenConfigurationError, UpstreamError
from src.proxy.forwarding import UpstreamResponse
from src.proxy.lambda_invoke import LambdaInvoker

logger = Logger(service="hmac-proxy")


class IdentityRecord(BaseModel):
    """Subset of the backend identity record the token function needs."""

    model_config = ConfigDict(extra="ignore")

    user_id: str = Field(validation_alias=AliasChoices("userId", "id"))
    email: str

    @field_validator("user_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


def _backend_message(response: UpstreamResponse) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if message:
            return str(message)
    return response.text or response.reason or f"Backend returned {response.status_code}"


class TokenMinter:
    def __init__(
        self,
        settings: ProxySettings,
        engine: ProxyEngine,
        secret_cache: SecretCache,
        invoker: LambdaInvoker,
    ) -> None:
        self._settings = settings
        self._engine = engine
        self._secrets = secret_cache
        self._invoker = invoker

    def _require_config(self) -> tuple[str, str]:
        function_name = self._settings.token_function_name
        jwt_secret_name = self._settings.jwt_secret_name
        if not function_name or not jwt_secret_name:
            logger.error(
                "Token mint not configured",
                extra={
                    "token_function_name": function_name,
                    "jwt_secret_name_set": bool(jwt_secret_name),
                },
            )
            raise TokenConfigurationError(
                "JWT_SECRET_NAME and TOKEN_FUNCTION_NAME must be set for token generation"
            )
        return function_name, jwt_secret_name

    def lookup_identity(self, national_id: str, headers: Mapping[str, str]) -> IdentityRecord:
        path = self._settings.identity_lookup_path.format(national_id=quote(national_id, safe=""))
        lookup_headers = {"accept": "application/json"}
        timestamp_header = self._engine.signer.profile.timestamp_header
        timestamp = header_value(headers, timestamp_header)
        if timestamp:
            lookup_headers[timestamp_header] = timestamp

        response = self._engine.call_backend("GET", path, lookup_headers)
        if not response.ok:
            raise UpstreamError(response.status_code, _backend_message(response))

        try:
            return IdentityRecord.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            logger.warning(
                "Identity record incomplete", extra={"status_code": response.status_code}
            )
            raise IdentityRecordError(
                f"Identity record is missing userId or email: {exc}"
            ) from exc

    def mint(self, national_id: str, headers: Mapping[str, str]) -> dict[str, Any]:
        function_name, jwt_secret_name = self._require_config()

        identity = self.lookup_identity(national_id, headers)

        try:
            jwt_secret = self._secrets.get(jwt_secret_name, self._settings.aws_region)
        except SecretFetchError as exc:
            raise TokenConfigurationError(str(exc)) from exc

        result = self._invoker.invoke(
            function_name,
            {"userId": identity.user_id, "email": identity.email, "jwtSecret": jwt_secret},
        )
        logger.info(
            "Token minted", extra={"user_id": identity.user_id, "status_code": result["statusCode"]}
        )
        return result
