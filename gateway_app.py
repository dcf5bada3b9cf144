"""HTTP surface of the x402 mint gateway."""

import json
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.concurrency import run_in_threadpool

from chain_client import ChainClient
from challenges import PaymentRequirement, mint_offers, payment_required_body
from gateway_config import GatewayConfig
from logging_utils import get_logger
from payment_errors import InternalError, PaymentError
from relay_engine import PaymentRelayEngine
from relayer_pool import build_relayer_pool

logger = get_logger("gateway_app")

PAYMENT_HEADER = "X-PAYMENT"
ALL_METHODS = ["GET", "HEAD", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"]
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,OPTIONS",
}
# Not forwarded upstream.
_DROPPED_REQUEST_HEADERS = {"host", "connection", "content-length", "accept-encoding"}
# httpx has already de-chunked and decompressed the upstream body.
_DROPPED_RESPONSE_HEADERS = {
    "connection",
    "content-encoding",
    "content-length",
    "keep-alive",
    "transfer-encoding",
}


def _json_response(
    body: dict[str, Any],
    status_code: int,
    headers: dict[str, str] | None = None,
    cors: bool = True,
) -> Response:
    merged = dict(CORS_HEADERS) if cors else {}
    merged.update(headers or {})
    return Response(
        content=json.dumps(body),
        status_code=status_code,
        headers=merged,
        media_type="application/json",
    )


def _forward_headers(request: Request) -> dict[str, str]:
    headers: dict[str, str] = {}
    for key, value in request.headers.items():
        key_lower = key.lower()
        if key_lower in _DROPPED_REQUEST_HEADERS:
            continue
        if key_lower in headers:
            headers[key_lower] = f"{headers[key_lower]}, {value}"
        else:
            headers[key_lower] = value
    headers.setdefault("content-type", "application/json")
    return headers


def create_app(
    config: GatewayConfig | None = None,
    engine: PaymentRelayEngine | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    config = config or GatewayConfig.from_env()
    if engine is None:
        pool = build_relayer_pool(config.relayer_private_keys, config.relayer_selection)
        engine = PaymentRelayEngine(config, ChainClient(config), pool)
    client = http_client or httpx.AsyncClient(timeout=120.0)
    offers = mint_offers(config)
    config.log_summary(logger)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        await client.aclose()

    app = FastAPI(
        title="x402 Mint Gateway",
        description="Verifies EIP-3009 payment proofs and relays them on-chain",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.engine = engine

    async def handle_paid_request(request: Request, requirement: PaymentRequirement) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        if request.method != "GET":
            return _json_response(
                {"error": f"Method {request.method} not allowed"},
                405,
                {"Allow": "GET, OPTIONS"},
            )

        payment_header = request.headers.get(PAYMENT_HEADER)
        if not payment_header:
            return _json_response(payment_required_body(requirement, config.x402_version), 402)

        try:
            result = await run_in_threadpool(engine.settle, payment_header)
        except PaymentError as exc:
            return _json_response(exc.to_response_body(), exc.status_code)
        except Exception as exc:
            logger.exception("Unexpected error while settling payment: %s", exc)
            error = InternalError(str(exc))
            return _json_response(error.to_response_body(), error.status_code)

        logger.info("Settled %s in block %d", result.tx_hash, result.block_number)
        return _json_response(result.to_response_body(), 200)

    @app.api_route("/api/mint", methods=ALL_METHODS)
    async def mint(request: Request):
        return await handle_paid_request(request, offers["mint"])

    @app.api_route("/api/mint-10usdc", methods=ALL_METHODS)
    async def mint_10usdc(request: Request):
        return await handle_paid_request(request, offers["mint-10usdc"])

    @app.api_route("/api/proxy", methods=ALL_METHODS)
    async def proxy(request: Request):
        if request.method != "POST":
            return _json_response(
                {"error": "Only POST is allowed"}, 405, {"Allow": "POST"}, cors=False
            )
        if not config.target_url:
            return _json_response({"error": "TARGET_URL not configured"}, 400, cors=False)

        body = await request.body()
        try:
            upstream = await client.post(
                config.target_url,
                content=body,
                headers=_forward_headers(request),
            )
        except httpx.HTTPError as exc:
            logger.warning("Proxy request to %s failed: %s", config.target_url, exc)
            return _json_response(
                {"error": "Bad gateway", "detail": str(exc)}, 502, cors=False
            )

        response = Response(content=upstream.content, status_code=upstream.status_code)
        for key, value in upstream.headers.multi_items():
            if key.lower() not in _DROPPED_RESPONSE_HEADERS:
                response.headers.append(key, value)
        response.headers["Cache-Control"] = "no-store"
        return response

    @app.get("/")
    async def root():
        return {
            "status": "x402 Mint Gateway",
            "network": config.network,
            "chainId": config.chain_id,
            "asset": config.asset_address,
            "endpoints": ["/api/mint", "/api/mint-10usdc", "/api/proxy"],
        }

    @app.get("/health")
    async def health():
        return {"status": "healthy", "relayers": len(engine.pool)}

    return app
