"""
proxy.lambda_invoke — Synchronous AWS Lambda invocation for the token-mint path.

The invoked function answers with an API-Gateway-shaped payload:
    {"statusCode": int, "body": str | dict}

statusCode >= 400, an unhandled function error, or an empty payload are all
FunctionInvokeError; the message is unwrapped from body.message / body.error.
"""

from __future__ import annotations

import json
from typing import Any

import boto3
from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

from src.proxy.errors import (
    FunctionInvokeError,
    FunctionNotFoundError,
    InvalidFunctionParameterError,
)

logger = Logger(service="hmac-proxy")


def _parse_body(body: Any) -> Any:
    if isinstance(body, str):
        try:
            return json.loads(body)
        except json.JSONDecodeError:
            return body
    return body


def _error_message(body: Any) -> str:
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or "Lambda function returned an error")
    if isinstance(body, str) and body:
        return body
    return "Lambda function returned an error"


class LambdaInvoker:
    """Invokes functions with InvocationType=RequestResponse."""

    def __init__(self, region: str, *, lambda_client: Any = None) -> None:
        self._region = region
        self._client = lambda_client

    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("lambda", region_name=self._region)
        return self._client

    def invoke(self, function_name: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self.client().invoke(
                FunctionName=function_name,
                InvocationType="RequestResponse",
                Payload=json.dumps(payload).encode("utf-8"),
            )
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code == "ResourceNotFoundException":
                raise FunctionNotFoundError(f"Lambda function {function_name} not found") from exc
            if code == "InvalidParameterValueException":
                raise InvalidFunctionParameterError(
                    f"Invalid parameter for Lambda function {function_name}"
                ) from exc
            raise FunctionInvokeError(str(exc)) from exc
        except BotoCoreError as exc:
            raise FunctionInvokeError(str(exc)) from exc

        raw = response.get("Payload")
        data = raw.read() if raw is not None else b""
        if not data:
            raise FunctionInvokeError("Empty response from Lambda function")
        try:
            result = json.loads(data)
        except json.JSONDecodeError as exc:
            raise FunctionInvokeError(f"Malformed response from Lambda function: {exc}") from exc

        if response.get("FunctionError"):
            message = result.get("errorMessage") if isinstance(result, dict) else None
            logger.error(
                "Lambda function raised",
                extra={"function_name": function_name, "function_error": response["FunctionError"]},
            )
            raise FunctionInvokeError(str(message or "Lambda function failed"))

        if not isinstance(result, dict):
            raise FunctionInvokeError("Unexpected response shape from Lambda function")

        body = _parse_body(result.get("body"))
        status_code = int(result.get("statusCode") or 200)
        if status_code >= 400:
            logger.warning(
                "Lambda function returned an error status",
                extra={"function_name": function_name, "status_code": status_code},
            )
            raise FunctionInvokeError(_error_message(body))

        return {"statusCode": status_code, "body": body}
