"""
Exception handling and request logging middleware for the Resume Match API
"""
import time
import traceback
import uuid
from datetime import datetime
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from app.utils.exceptions import PipelineBaseException, map_to_http_exception
from app.utils.logging_config import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _request_id(request: Request) -> str:
    rid = getattr(request.state, "request_id", None)
    if rid is None:
        rid = request.state.request_id = uuid.uuid4().hex
    return rid


def _route(request: Request) -> str:
    return f"{request.method} {request.url.path}"


def error_response(request_id: str, status_code: int, detail: Any) -> JSONResponse:
    """Uniform error body: success flag, timestamp, request id and status, plus the detail fields"""
    if not isinstance(detail, dict):
        detail = {"message": detail if isinstance(detail, str) else str(detail)}

    body = {
        "success": False,
        "timestamp": datetime.utcnow().isoformat(),
        "request_id": request_id,
        "status_code": status_code,
    }
    body.update(detail)
    return JSONResponse(status_code=status_code, content=body, headers={REQUEST_ID_HEADER: request_id})


async def pipeline_exception_handler(request: Request, exc: PipelineBaseException) -> JSONResponse:
    """Translate pipeline exceptions raised in routes into JSON errors"""
    rid = _request_id(request)
    http_exc = map_to_http_exception(exc)
    level = "warning" if http_exc.status_code < 500 else "error"
    getattr(logger, level)(
        f"{_route(request)} -> {http_exc.status_code} {exc.error_code}: {exc.message}",
        extra={"request_id": rid, "details": exc.details},
    )
    return error_response(rid, http_exc.status_code, http_exc.detail)


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """Outermost safety net: request ids plus JSON errors for anything routes let escape"""

    async def dispatch(self, request: Request, call_next):
        rid = _request_id(request)
        client = request.client.host if request.client else "unknown"
        logger.info(f"-> {_route(request)} from {client}", extra={"request_id": rid})

        try:
            response = await call_next(request)
        except PipelineBaseException as exc:
            return await pipeline_exception_handler(request, exc)
        except ValidationError as exc:
            logger.error(f"Model validation failed for {_route(request)}: {exc}", extra={"request_id": rid})
            return error_response(rid, 400, {
                "error": "Invalid data",
                "message": "A stored or submitted record did not match its schema",
                "validation_errors": exc.errors(include_url=False),
            })
        except Exception as exc:
            logger.error(
                f"Unexpected {exc.__class__.__name__} in {_route(request)}: {exc}",
                extra={"request_id": rid, "traceback": traceback.format_exc()},
                exc_info=True,
            )
            return error_response(rid, 500, {
                "error": "Internal server error",
                "message": "The request could not be completed",
            })

        response.headers[REQUEST_ID_HEADER] = rid
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and duration of every request"""

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        rid = _request_id(request)
        if request.query_params:
            logger.debug(f"{_route(request)} query={dict(request.query_params)}", extra={"request_id": rid})

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                f"<- {_route(request)} raised {exc.__class__.__name__} after {time.perf_counter() - started:.3f}s",
                extra={"request_id": rid},
            )
            raise

        logger.info(
            f"<- {_route(request)} {response.status_code} ({time.perf_counter() - started:.3f}s)",
            extra={"request_id": rid},
        )
        return response


class PerformanceMiddleware(BaseHTTPMiddleware):
    """Warns about slow requests and sets X-Processing-Time"""

    def __init__(self, app, slow_request_threshold: float = 2.0):
        super().__init__(app)
        self.threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        if elapsed > self.threshold:
            logger.warning(
                f"Slow request {_route(request)}: {elapsed:.3f}s (threshold {self.threshold}s)",
                extra={"request_id": _request_id(request)},
            )
        response.headers["X-Processing-Time"] = f"{elapsed:.3f}"
        return response
