from contextlib import asynccontextmanager
from typing import Optional
import logging
import uuid

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from receipt_api.api.routes_health import router as health_router
from receipt_api.api.routes_receipts import router as receipts_router
from receipt_api.core.config import Settings
from receipt_api.core.errors import ApiError, StoreError
from receipt_api.core.logging_config import reset_request_id, set_request_id, setup_logging
from receipt_api.services.kv_store import KVStore, build_store
from receipt_api.services.receipt_service import ReceiptService
from receipt_api.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)

CORS_ALLOW_METHODS = "GET,POST,PUT,DELETE,OPTIONS"
CORS_ALLOW_HEADERS = "content-type,authorization,x-api-key,x-request-id"

_STATUS_CODES = {
    400: "bad_request",
    401: "unauthorized",
    404: "not_found",
    405: "method_not_allowed",
}


class CorsMiddleware(BaseHTTPMiddleware):
    """
    Reflects the caller's Origin on every response and answers any OPTIONS
    request with an empty 204, whether or not it is a real preflight.
    """

    def __init__(self, app, max_age: int = 86400):
        super().__init__(app)
        self.max_age = max_age

    def _headers(self, request: Request) -> dict:
        origin = request.headers.get("origin")
        headers = {
            "Access-Control-Allow-Origin": origin or "*",
            "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
            "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
            "Access-Control-Expose-Headers": "x-request-id",
            "Access-Control-Max-Age": str(self.max_age),
        }
        if origin:
            headers["Vary"] = "Origin"
        return headers

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=self._headers(request))
        response = await call_next(request)
        response.headers.update(self._headers(request))
        return response


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Reads X-Request-ID (or generates one), exposes it to logging, echoes it back."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        token = set_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            reset_request_id(token)
        response.headers["X-Request-ID"] = request_id
        return response


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "code": code, "message": message})


async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def store_error_handler(request: Request, exc: StoreError):
    logger.error("Store failure during %s %s (operation=%s): %s", request.method, request.url.path, exc.operation, exc)
    return _error(500, "kv_error", "Key-value store operation failed")


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = _STATUS_CODES.get(exc.status_code, "http_error")
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _error(exc.status_code, code, message)


class UnhandledErrorMiddleware(BaseHTTPMiddleware):
    """
    Innermost middleware: turns unexpected exceptions into the 500 envelope
    while still inside CORS and request-id handling, so those headers are set.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.exception("Unhandled error during %s %s", request.method, request.url.path)
            return _error(500, "internal_error", "Internal server error")


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[KVStore] = None,
    clock: Clock = system_clock,
) -> FastAPI:
    """
    Build the API with its dependencies bound to app.state.

    store wins over settings.KV_URL. With neither, receipt routes answer
    500 kv_missing while health keeps working.
    """
    settings = settings or Settings()
    if store is None and settings.KV_URL:
        store = build_store(settings.KV_URL, timeout_seconds=settings.KV_TIMEOUT_SECONDS, clock=clock)
    if store is None:
        logger.warning("KV_URL is not set; receipt endpoints will return kv_missing")

    receipt_service = None
    if store is not None:
        receipt_service = ReceiptService(
            store,
            clock=clock,
            dedup_ttl_seconds=settings.DEDUP_TTL_SECONDS,
            index_ttl_seconds=settings.index_ttl_seconds,
            note_max_length=settings.NOTE_MAX_LENGTH,
            source_max_length=settings.SOURCE_MAX_LENGTH,
            default_limit=settings.LIST_DEFAULT_LIMIT,
            max_limit=settings.LIST_MAX_LIMIT,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "%s %s starting (env=%s, auth=%s, kv=%s)",
            settings.PROJECT_NAME,
            settings.VERSION,
            settings.ENVIRONMENT,
            "on" if settings.auth_enabled else "off",
            type(store).__name__ if store is not None else "missing",
        )
        yield
        if store is not None:
            store.close()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="Receipt ingestion API backed by a key-value store",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.clock = clock
    app.state.receipt_service = receipt_service

    # Last added runs first: request id -> CORS -> unhandled errors -> routes
    app.add_middleware(UnhandledErrorMiddleware)
    app.add_middleware(CorsMiddleware, max_age=settings.CORS_MAX_AGE)
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)

    app.include_router(health_router, tags=["health"])
    app.include_router(receipts_router, tags=["receipts"])
    return app


settings = Settings()
setup_logging(settings.LOG_LEVEL)
app = create_app(settings)
