from __future__ import annotations

import io
import json
from typing import Any
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from src.proxy.errors import (
    FunctionInvokeError,
    FunctionNotFoundError,
    InvalidFunctionParameterError,
)
from src.proxy.lambda_invoke import LambdaInvoker


def _payload(data: Any, function_error: str | None = None) -> dict[str, Any]:
    raw = data if isinstance(data, bytes) else json.dumps(data).encode()
    response: dict[str, Any] = {"StatusCode": 200, "Payload": io.BytesIO(raw)}
    if function_error:
        response["FunctionError"] = function_error
    return response


@pytest.fixture
def lambda_client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def invoker(lambda_client: MagicMock) -> LambdaInvoker:
    return LambdaInvoker("us-east-1", lambda_client=lambda_client)


def test_invoke_request_response(invoker: LambdaInvoker, lambda_client: MagicMock) -> None:
    body = {"token": "abc", "expires_in": 3600, "token_type": "Bearer"}
    lambda_client.invoke.return_value = _payload({"statusCode": 200, "body": json.dumps(body)})

    result = invoker.invoke("token-minter", {"userId": "u1", "email": "a@b.c"})

    assert result == {"statusCode": 200, "body": body}
    kwargs = lambda_client.invoke.call_args.kwargs
    assert kwargs["FunctionName"] == "token-minter"
    assert kwargs["InvocationType"] == "RequestResponse"
    assert json.loads(kwargs["Payload"]) == {"userId": "u1", "email": "a@b.c"}


def test_dict_body_passed_through(invoker: LambdaInvoker, lambda_client: MagicMock) -> None:
    lambda_client.invoke.return_value = _payload({"statusCode": 201, "body": {"ok": True}})

    assert invoker.invoke("fn", {}) == {"statusCode": 201, "body": {"ok": True}}


def test_error_status_unwraps_message(invoker: LambdaInvoker, lambda_client: MagicMock) -> None:
    lambda_client.invoke.return_value = _payload(
        {"statusCode": 400, "body": json.dumps({"error": "Missing required fields"})}
    )

    with pytest.raises(FunctionInvokeError, match="Missing required fields"):
        invoker.invoke("fn", {})


def test_function_error(invoker: LambdaInvoker, lambda_client: MagicMock) -> None:
    lambda_client.invoke.return_value = _payload(
        {"errorMessage": "boom", "errorType": "RuntimeError"}, function_error="Unhandled"
    )

    with pytest.raises(FunctionInvokeError, match="boom"):
        invoker.invoke("fn", {})


def test_empty_payload(invoker: LambdaInvoker, lambda_client: MagicMock) -> None:
    lambda_client.invoke.return_value = _payload(b"")

    with pytest.raises(FunctionInvokeError, match="Empty response from Lambda function"):
        invoker.invoke("fn", {})


@pytest.mark.parametrize(
    ("code", "error_type", "message"),
    [
        ("ResourceNotFoundException", FunctionNotFoundError, "Lambda function fn not found"),
        ("InvalidParameterValueException", InvalidFunctionParameterError, "Invalid parameter"),
        ("TooManyRequestsException", FunctionInvokeError, "TooManyRequests"),
    ],
)
def test_client_errors_mapped(
    invoker: LambdaInvoker,
    lambda_client: MagicMock,
    code: str,
    error_type: type[Exception],
    message: str,
) -> None:
    lambda_client.invoke.side_effect = ClientError(
        {"Error": {"Code": code, "Message": "nope"}}, "Invoke"
    )

    with pytest.raises(error_type, match=message) as exc_info:
        invoker.invoke("fn", {})

    assert exc_info.value.status_code == 500
    assert exc_info.value.error == "Token generation failed"


def test_botocore_error_mapped(invoker: LambdaInvoker, lambda_client: MagicMock) -> None:
    lambda_client.invoke.side_effect = EndpointConnectionError(endpoint_url="https://lambda")

    with pytest.raises(FunctionInvokeError):
        invoker.invoke("fn", {})


def test_client_created_lazily(monkeypatch: pytest.MonkeyPatch) -> None:
    created = MagicMock()
    factory = MagicMock(return_value=created)
    monkeypatch.setattr("src.proxy.lambda_invoke.boto3.client", factory)
    invoker = LambdaInvoker("eu-west-2")

    assert invoker.client() is created
    assert invoker.client() is created
    factory.assert_called_once_with("lambda", region_name="eu-west-2")
