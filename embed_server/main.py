"""
Embed Server: Power BI embed token broker.
GET /health, GET /api/config, POST /api/token. Port 3000 by default (PORT).
"""
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from embed_server.config import (
    CLIENT_ID,
    CLIENT_SECRET,
    ENVIRONMENT,
    PORT,
    REPORT_ID,
    TENANT_ID,
    TOKEN_RATE_LIMIT_PER_MINUTE,
    WORKSPACE_ID,
    validate_config,
)
from embed_server.embed_token import EmbedTokenIssuer
from embed_server.errors import ConfigurationError, EmbedServiceError
from embed_server.identity import IdentityTokenCache
from embed_server.logging_setup import configure_logging
from embed_server.rate_limit import SlidingWindowLimiter

logger = logging.getLogger(__name__)

# Single process-wide issuer (and therefore a single identity token cache slot)
_issuer: EmbedTokenIssuer | None = None

token_limiter = SlidingWindowLimiter(TOKEN_RATE_LIMIT_PER_MINUTE)


def get_issuer() -> EmbedTokenIssuer:
    global _issuer
    if _issuer is None:
        cache = IdentityTokenCache(TENANT_ID, CLIENT_ID, CLIENT_SECRET)
        _issuer = EmbedTokenIssuer(cache)
    return _issuer


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and validate credentials on startup; close outbound clients on shutdown."""
    global _issuer
    configure_logging(ENVIRONMENT)
    try:
        validate_config()
    except ConfigurationError as e:
        logger.error("Configuration validation failed: %s", e.message)
        raise
    logger.info("Configuration validated successfully (environment=%s)", ENVIRONMENT)
    yield
    if _issuer is not None:
        await _issuer.aclose()
        _issuer = None
    logger.info("Server closed")


app = FastAPI(title="Embed Server", version="1.0.0", lifespan=lifespan)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _correlation_id(request: Request) -> str | None:
    return getattr(request.state, "correlation_id", None)


def _client_ip(request: Request) -> str:
    if request.client is None:
        return "unknown"
    return request.client.host


def _failure(status_code: int, error: str, correlation_id: str | None, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": error,
            "correlationId": correlation_id,
            "timestamp": _utc_timestamp(),
        },
        headers=headers,
    )


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Tag every request with a fresh correlation id; echoed back as X-Correlation-ID."""
    correlation_id = str(uuid.uuid4())
    request.state.correlation_id = correlation_id
    logger.info("%s %s [%s]", request.method, request.url.path, correlation_id)
    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    correlation_id = _correlation_id(request)
    if exc.status_code == 404:
        error = "Endpoint not found"
    else:
        error = str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": error, "correlationId": correlation_id},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    correlation_id = _correlation_id(request)
    logger.exception("Unhandled error [%s]", correlation_id)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "An unexpected error occurred", "correlationId": correlation_id},
    )


@app.get("/health")
def health(request: Request):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": _utc_timestamp(),
        "environment": ENVIRONMENT,
        "correlationId": _correlation_id(request),
    }


@app.get("/api/config")
def report_config(request: Request):
    """Non-sensitive configuration the client needs to embed the report."""
    return {
        "workspaceId": WORKSPACE_ID,
        "reportId": REPORT_ID,
        "environment": ENVIRONMENT,
        "correlationId": _correlation_id(request),
    }


@app.post("/api/token")
async def embed_token(request: Request, issuer: EmbedTokenIssuer = Depends(get_issuer)):
    """
    Mint a fresh view-only embed token for the configured report.
    Failures map to 401 (identity exchange), 403 (Power BI permissions), 500 (anything else), 429 (rate limit).
    """
    correlation_id = _correlation_id(request)
    allowed, retry_after = token_limiter.check_and_consume(_client_ip(request))
    if not allowed:
        logger.warning("Token rate limit exceeded for %s [%s]", _client_ip(request), correlation_id)
        return _failure(
            429,
            "Too many token requests, please try again later",
            correlation_id,
            headers={"Retry-After": str(retry_after)},
        )

    try:
        token = await issuer.issue(WORKSPACE_ID, REPORT_ID)
    except EmbedServiceError as e:
        logger.error("Token generation failed [%s]: %s", correlation_id, e.message)
        return _failure(e.status_code, e.user_message, correlation_id)

    return {
        "success": True,
        "token": token.value,
        "embedUrl": token.embed_url,
        "expiry": token.expires_at.isoformat(),
        "correlationId": correlation_id,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "embed_server.main:app",
        host="127.0.0.1",
        port=PORT,
        reload=ENVIRONMENT != "production",
    )
