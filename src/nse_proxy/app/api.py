"""FastAPI application exposing the NSE batch proxy.

Run with:
    uvicorn nse_proxy.app.api:app --reload
or:
    python -m nse_proxy.app.api

Environment variables prefixed with ``NSE_PROXY_`` (e.g.
``NSE_PROXY_WINDOW_SIZE=4``) override default configuration values.
"""

from __future__ import annotations

import hashlib
import json
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from typing import Any, List, cast

from fastapi import Depends, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from nse_proxy.batch.compiler import http_status_for
from nse_proxy.batch.orchestrator import BatchOrchestrator
from nse_proxy.config.settings import ProxySettings, get_settings
from nse_proxy.errors import (
    ErrorCode,
    InputError,
    ProxyError,
    get_error_metrics,
    wrap_error,
)
from nse_proxy.logging import get_logger, log_exception
from nse_proxy.models import BatchResult, iso_timestamp
from nse_proxy.security.validation import (
    SanitizationError,
    parse_symbol_list,
    sanitize_endpoint,
    sanitize_symbols,
)
from nse_proxy.upstream.endpoints import valid_endpoint_names

settings = get_settings()

logger = get_logger(__name__, component="rest_api")

PROXY_PATH = "/api/nse-proxy"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "X-Requested-With, Content-Type, Accept, Authorization, Origin",
    "Access-Control-Max-Age": "86400",
}

_STATUS_BY_CODE = {
    ErrorCode.INPUT: 400,
    ErrorCode.SESSION: 503,
    ErrorCode.CONFIG: 500,
    ErrorCode.UNKNOWN: 500,
}
_CACHEABLE_STATUSES = {status.HTTP_200_OK, status.HTTP_207_MULTI_STATUS}


class BatchRequestBody(BaseModel):
    """POST body accepted by the proxy route."""

    symbols: List[str] | str = Field(default_factory=list)
    endpoint: str | None = None


def _error_response(error: ProxyError, *, event: str) -> JSONResponse:
    """Log ``error`` and render it as a JSON response."""

    status_code = _STATUS_BY_CODE.get(error.code, 500)
    log_exception(logger, error, event=event)
    body: dict[str, Any] = {"error": error.user_message, "code": error.code.value}
    if isinstance(error, InputError):
        body.update(error.hint)
    body["timestamp"] = iso_timestamp()
    response = JSONResponse(status_code=status_code, content=body)
    response.headers["Cache-Control"] = "no-store"
    return response


def _canonical_json(value: Any) -> bytes:
    serialized = json.dumps(
        jsonable_encoder(value),
        separators=(",", ":"),
        sort_keys=True,
        ensure_ascii=False,
    )
    return serialized.encode("utf-8")


def _batch_response(request: Request, result: BatchResult, ttl: int) -> Response:
    """Serialise ``result`` and attach cache metadata.

    Successful and partially successful batches are cacheable for ``ttl``
    seconds. Their weak ETag hashes only the timing-free content, so a repeat
    request with unchanged upstream data revalidates with a 304. Total
    failures are never cached.
    """

    status_code = http_status_for(result)
    body = _canonical_json(result.to_payload())
    response = Response(content=body, status_code=status_code, media_type="application/json")
    if status_code not in _CACHEABLE_STATUSES:
        response.headers["Cache-Control"] = "no-store"
        return response

    digest = hashlib.sha256(_canonical_json(result.content_payload())).hexdigest()
    etag = f'W/"{digest}"'
    if_none_match = request.headers.get("if-none-match")
    if if_none_match:
        candidates = {
            candidate.strip().removeprefix("W/").strip('"')
            for candidate in if_none_match.split(",")
        }
        if digest in candidates or "*" in candidates:
            response = Response(status_code=status.HTTP_304_NOT_MODIFIED)
    response.headers["ETag"] = etag
    response.headers["Cache-Control"] = f"public, max-age={ttl}, s-maxage={ttl}"
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)
    response.headers["Expires"] = format_datetime(expires_at, usegmt=True)
    return response


class SecureHeadersMiddleware(BaseHTTPMiddleware):
    """Attach standard security headers to responses."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        response = await call_next(request)
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload"
        )
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "same-origin")
        return response


class CorsHeadersMiddleware(BaseHTTPMiddleware):
    """Attach permissive CORS headers so browser dashboards can call the proxy."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        response = await call_next(request)
        for name, value in CORS_HEADERS.items():
            response.headers.setdefault(name, value)
        return response


def build_orchestrator(config: ProxySettings) -> BatchOrchestrator:
    return BatchOrchestrator(config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.orchestrator = build_orchestrator(settings)
    logger.info(
        {
            "event": "proxy_started",
            "session_policy": settings.session_policy.value,
            "window_size": settings.window_size,
            "processing_deadline": settings.processing_deadline,
        }
    )
    yield
    app.state.orchestrator = None


app = FastAPI(title="NSE Quote Proxy", lifespan=lifespan)

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit],
    enabled=settings.rate_limit_enabled,
)
app.state.limiter = limiter


def _rate_limit_handler(request: Request, exc: Exception) -> Response:
    """Forward SlowAPI rate-limit exceptions to its default handler."""

    return _rate_limit_exceeded_handler(request, cast(RateLimitExceeded, exc))


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(SecureHeadersMiddleware)
app.add_middleware(CorsHeadersMiddleware)


def get_orchestrator(request: Request) -> BatchOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        orchestrator = build_orchestrator(settings)
        request.app.state.orchestrator = orchestrator
    return orchestrator


async def _run_proxy(
    request: Request,
    raw_symbols: List[Any],
    endpoint: str | None,
    orchestrator: BatchOrchestrator,
    config: ProxySettings,
) -> Response:
    try:
        symbols = sanitize_symbols(raw_symbols, max_symbols=config.max_symbols_per_request)
        spec = sanitize_endpoint(endpoint)
    except InputError as error:
        return _error_response(error, event="proxy_validation")

    try:
        result = await orchestrator.run_batch(symbols, spec.kind)
    except ProxyError as error:
        return _error_response(error, event="proxy_failure")
    except Exception as exc:
        error = wrap_error(
            exc,
            message="Batch proxy failure",
            context={"symbols": len(symbols), "endpoint": spec.kind.value},
            user_message="Internal server error",
        )
        log_exception(logger, error, event="request_failed", endpoint=spec.kind.value)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "message": str(exc),
                "timestamp": iso_timestamp(),
            },
            headers={"Cache-Control": "no-store"},
        )

    return _batch_response(request, result, config.cache_max_age)


@app.options(PROXY_PATH, include_in_schema=False)
async def proxy_preflight() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=CORS_HEADERS)


@app.get(PROXY_PATH)
async def proxy_get(
    request: Request,
    symbol: str | None = None,
    symbols: str | None = None,
    endpoint: str | None = None,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
    config: ProxySettings = Depends(get_settings),
) -> Response:
    """Fetch one symbol (``symbol``) or a comma-separated batch (``symbols``)."""

    if symbols:
        raw = parse_symbol_list(symbols)
    elif symbol:
        raw = [symbol]
    else:
        raw = []
    return await _run_proxy(request, raw, endpoint, orchestrator, config)


@app.post(PROXY_PATH)
async def proxy_post(
    request: Request,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
    config: ProxySettings = Depends(get_settings),
) -> Response:
    """Fetch a batch described by a JSON body ``{"symbols": [...], "endpoint": ...}``."""

    try:
        raw_body = await request.json()
    except ValueError:
        error = SanitizationError("Request body must be valid JSON.", field="body")
        return _error_response(error, event="proxy_validation")
    if raw_body is None:
        raw_body = {}
    try:
        body = BatchRequestBody.model_validate(raw_body)
    except PydanticValidationError:
        error = SanitizationError(
            "Request body must be an object with a 'symbols' array.", field="body"
        )
        return _error_response(error, event="proxy_validation")

    raw = parse_symbol_list(body.symbols) if isinstance(body.symbols, str) else list(body.symbols)
    return await _run_proxy(request, raw, body.endpoint, orchestrator, config)


@app.api_route(PROXY_PATH, methods=["PUT", "PATCH", "DELETE"], include_in_schema=False)
async def proxy_method_not_allowed() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        content={"error": "Method not allowed"},
        headers={"Allow": "GET, POST, OPTIONS"},
    )


@app.get("/api/endpoints", tags=["operations"])
async def endpoints_index() -> JSONResponse:
    return JSONResponse(content={"endpoints": valid_endpoint_names()})


@app.get("/healthz", tags=["operations"], response_class=JSONResponse)
async def healthz(config: ProxySettings = Depends(get_settings)) -> JSONResponse:
    """Liveness endpoint with configuration summary and error counters."""

    body = {
        "status": "ok",
        "sessionPolicy": config.session_policy.value,
        "windowSize": config.window_size,
        "processingDeadline": config.processing_deadline,
        "errors": get_error_metrics(),
        "timestamp": iso_timestamp(),
    }
    return JSONResponse(status_code=status.HTTP_200_OK, content=body)


def main() -> None:
    """Run a development server using :mod:`uvicorn`.

    This mirrors running ``uvicorn nse_proxy.app.api:app``.
    """

    import uvicorn

    uvicorn.run("nse_proxy.app.api:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
