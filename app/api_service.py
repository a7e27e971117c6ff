from __future__ import annotations

import logging
import os
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from config.settings import settings
from ops.structured_logger import setup_logging
from security.field_crypto import DecryptionError, EncryptionConfigError
from storage.firestore_client import DataStore
from utils.request_context import clear_request_id, set_request_id

from app.routers.admin import router as admin_router
from app.routers.health import router as health_router

setup_logging(settings.LOG_LEVEL)
log = logging.getLogger("uniform.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # A store injected before startup (tests, emulator) is used as-is.
    owned = None
    if getattr(app.state, "store", None) is None:
        owned = DataStore().open()
        app.state.store = owned
    try:
        yield
    finally:
        if owned is not None:
            owned.close()
            app.state.store = None


app = FastAPI(title="Uniform DataOps API", version="1.0.0", lifespan=lifespan)


def _get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id") or ""


def _error_body(request: Request, **content) -> dict:
    return {**content, "request_id": _get_request_id(request), "revision": os.getenv("K_REVISION") or ""}


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    set_request_id(rid)
    try:
        response = await call_next(request)
    finally:
        clear_request_id()
    response.headers["X-Request-Id"] = rid
    return response


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    log.warning(
        "http_exception",
        extra={
            "extra": {
                "event": "http_exception",
                "status_code": exc.status_code,
                "detail": exc.detail,
                "path": request.url.path,
                "method": request.method,
                "request_id": _get_request_id(request),
            }
        },
    )
    return JSONResponse(status_code=exc.status_code, content=_error_body(request, detail=exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    log.warning(
        "validation_error",
        extra={"extra": {"event": "validation_error", "path": request.url.path, "method": request.method, "request_id": _get_request_id(request)}},
    )
    return JSONResponse(status_code=422, content=_error_body(request, detail=exc.errors()))


@app.exception_handler(EncryptionConfigError)
async def encryption_config_handler(request: Request, exc: EncryptionConfigError):
    log.error("encryption_not_configured", extra={"extra": {"path": request.url.path, "request_id": _get_request_id(request)}})
    return JSONResponse(status_code=503, content=_error_body(request, detail=str(exc)))


@app.exception_handler(DecryptionError)
async def decryption_error_handler(request: Request, exc: DecryptionError):
    # Usually a key mismatch between this service and the writer of the data.
    log.error("decryption_failed", extra={"extra": {"path": request.url.path, "request_id": _get_request_id(request)}})
    return JSONResponse(status_code=500, content=_error_body(request, detail="decryption_failed"))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    log.error(
        "internal_unhandled_exception",
        extra={
            "extra": {
                "event": "internal_unhandled_exception",
                "error_type": type(exc).__name__,
                "message": str(exc),
                "path": request.url.path,
                "method": request.method,
                "request_id": _get_request_id(request),
            }
        },
        exc_info=True,
    )
    return JSONResponse(status_code=500, content=_error_body(request, error="internal_unhandled_exception"))


app.include_router(health_router, tags=["health"])
app.include_router(admin_router, prefix="/admin", tags=["admin"])
