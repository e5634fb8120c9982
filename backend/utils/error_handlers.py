# backend/utils/error_handlers.py
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from database import DuplicateKeyError, IntegrityViolation, StoreError
from utils.errors import IdentityError
from utils.hashing import HashingError

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Map core failures to JSON responses; internal details never reach the client."""

    @app.exception_handler(IdentityError)
    async def identity_error_handler(request: Request, exc: IdentityError):
        logger.info(f"{exc.code} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        if isinstance(exc, DuplicateKeyError):
            code, http_status, message = "DUPLICATE_KEY", status.HTTP_409_CONFLICT, "Record already exists"
        elif isinstance(exc, IntegrityViolation):
            code, http_status, message = "INTEGRITY_VIOLATION", status.HTTP_409_CONFLICT, "Operation violates data integrity"
        else:
            code, http_status, message = "STORE_ERROR", status.HTTP_500_INTERNAL_SERVER_ERROR, "Database operation failed"
        logger.error(f"Store error on {request.url.path}: {exc}")
        return JSONResponse(status_code=http_status, content={"success": False, "error": message, "code": code})

    @app.exception_handler(HashingError)
    async def hashing_error_handler(request: Request, exc: HashingError):
        logger.error(f"Hashing failed on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": "Password processing failed", "code": "HASHING_ERROR"},
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": "An unexpected error occurred", "code": "INTERNAL_ERROR"},
        )
