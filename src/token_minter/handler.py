"""
token_minter.handler — Lambda that mints a short-lived HS256 bearer token.

Invoked synchronously by the proxy's token-mint route (RequestResponse).

Event:
    {"userId": str, "email": str, "jwtSecret": str}

Response (API-Gateway shaped, body is a JSON string):
    200 {"token": str, "expires_in": 3600, "token_type": "Bearer"}
    400 {"error": "Missing required fields", "message": ...}
    500 {"error": "Internal Server Error", "message": ...}

Claims: sub, email, role=USER, iat, exp (iat + 1h), jti (unique per token).
"""

import json
import time
import uuid
from typing import Any

import jwt
from aws_lambda_powertools import Logger, Tracer

logger = Logger(service="token-minter")
tracer = Tracer()

TOKEN_TTL_SECONDS = 3600
TOKEN_ROLE = "USER"


def _response(status_code: int, body: dict[str, Any]) -> dict[str, Any]:
    return {"statusCode": status_code, "body": json.dumps(body)}


def build_claims(user_id: str, email: str, now: int | None = None) -> dict[str, Any]:
    issued_at = int(time.time()) if now is None else now
    return {
        "sub": user_id,
        "email": email,
        "role": TOKEN_ROLE,
        "iat": issued_at,
        "exp": issued_at + TOKEN_TTL_SECONDS,
        "jti": str(uuid.uuid4()),
    }


@logger.inject_lambda_context
@tracer.capture_lambda_handler
def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Lambda entry point."""
    user_id = event.get("userId")
    email = event.get("email")
    jwt_secret = event.get("jwtSecret")

    if not user_id or not email or not jwt_secret:
        logger.warning(
            "Missing required fields",
            extra={"has_user_id": bool(user_id), "has_email": bool(email)},
        )
        return _response(
            400,
            {
                "error": "Missing required fields",
                "message": "userId, email and jwtSecret are required",
            },
        )

    try:
        claims = build_claims(str(user_id), str(email))
        token = jwt.encode(claims, jwt_secret, algorithm="HS256")
    except Exception as e:
        logger.exception("Error generating JWT")
        return _response(500, {"error": "Internal Server Error", "message": str(e)})

    logger.info("JWT issued", extra={"sub": claims["sub"], "jti": claims["jti"]})
    return _response(
        200,
        {"token": token, "expires_in": TOKEN_TTL_SECONDS, "token_type": "Bearer"},
    )
