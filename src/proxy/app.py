"""
proxy.app — FastAPI application for the HMAC signing proxy.

Routes (matched in order):
    POST /auth/token/{national_id}   token mint (identity lookup + Lambda JWT mint)
    *    /{path:path}                catch-all: sign, forward, relay

Blocking work (Secrets Manager, Lambda, the upstream HTTP call) runs in the
Starlette threadpool; the event loop only reads and writes requests.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from aws_lambda_powertools import Logger
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from hmac_signing import RequestSigner, SecretCache
from starlette.concurrency import run_in_threadpool

from src.proxy.config import ProxySettings
from src.proxy.engine import ProxyEngine
from src.proxy.errors import ProxyError
from src.proxy.forwarding import read_inbound, relay_response
from src.proxy.lambda_invoke import LambdaInvoker
from src.proxy.token_mint import TokenMinter

logger = Logger(service="hmac-proxy")

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def error_response(status_code: int, error: str, message: str) -> JSONResponse:
    """Standard error body: {"error": ..., "message": ...}."""
    return JSONResponse(status_code=status_code, content={"error": error, "message": message})


def create_app(
    settings: ProxySettings,
    *,
    secret_cache: SecretCache | None = None,
    lambda_invoker: LambdaInvoker | None = None,
) -> FastAPI:
    cache = (
        secret_cache
        if secret_cache is not None
        else SecretCache(default_region=settings.aws_region)
    )
    signer = RequestSigner(
        settings.signing_profile, cache, settings.hmac_secret_name, settings.aws_region
    )
    engine = ProxyEngine(signer, settings.target_base_url, settings.upstream_timeout_seconds)
    invoker = (
        lambda_invoker if lambda_invoker is not None else LambdaInvoker(settings.aws_region)
    )
    minter = TokenMinter(settings, engine, cache, invoker)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "HMAC proxy starting",
            extra={
                "port": settings.port,
                "target_base_url": settings.target_base_url,
                "hmac_secret_name": settings.hmac_secret_name,
                "aws_region": settings.aws_region,
                "signing_profile": settings.signing_profile.name,
                "timestamp_source": settings.signing_profile.timestamp_source,
            },
        )
        yield

    app = FastAPI(
        title="hmac-proxy",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.secret_cache = cache
    app.state.engine = engine

    @app.exception_handler(ProxyError)
    async def handle_proxy_error(_request: Request, exc: ProxyError) -> JSONResponse:
        return error_response(exc.status_code, exc.error, exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected(_request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error")
        return error_response(500, "Internal Server Error", str(exc))

    @app.post("/auth/token/{national_id}")
    async def mint_token(national_id: str, request: Request) -> JSONResponse:
        result: dict[str, Any] = await run_in_threadpool(
            minter.mint, national_id, request.headers
        )
        return JSONResponse(status_code=result["statusCode"], content=result["body"])

    @app.api_route("/{path:path}", methods=PROXY_METHODS)
    async def proxy(request: Request) -> Response:
        inbound = await read_inbound(request)
        upstream = await run_in_threadpool(engine.forward, inbound)
        return relay_response(upstream, inbound.method)

    return app
