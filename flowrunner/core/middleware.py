"""Middleware for error handling and request logging."""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import (
    ConfigurationError,
    ExecutionEngineError,
    GraphValidationError,
    PersistenceError,
    WorkflowEngineError,
    WorkflowNotFoundError,
    create_error_response,
)
from .logging import clear_logging_context, get_logger, set_logging_context

logger = get_logger(__name__)


def status_code_for_error(error: WorkflowEngineError) -> int:
    """Map a workflow error onto the HTTP status the API answers with."""
    if isinstance(error, GraphValidationError):
        return 400
    if isinstance(error, WorkflowNotFoundError):
        return 404
    if isinstance(error, PersistenceError):
        return 500
    if isinstance(error, ExecutionEngineError):
        if "not found" in error.message.lower():
            return 404
        return 500
    if isinstance(error, ConfigurationError):
        return 500
    return 500


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turns workflow errors into JSON responses and tags every request with an ID."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        start_time = time.time()

        context_token = set_logging_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown"
        )

        try:
            logger.info(f"Request started: {request.method} {request.url.path}")
            response = await call_next(request)

            duration = time.time() - start_time
            logger.info(
                f"Request completed: {request.method} {request.url.path} - "
                f"Status: {response.status_code} - Duration: {duration:.3f}s"
            )
            response.headers["X-Request-ID"] = request_id
            return response

        except WorkflowEngineError as e:
            duration = time.time() - start_time
            logger.warning(
                f"Workflow error: {request.method} {request.url.path} - "
                f"Error: {e.error_code} - Duration: {duration:.3f}s",
                extra={"extra_fields": {"error_details": e.to_dict()}}
            )
            return JSONResponse(
                status_code=status_code_for_error(e),
                content=create_error_response(e),
                headers={"X-Request-ID": request_id}
            )

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Unexpected error: {request.method} {request.url.path} - "
                f"Error: {str(e)} - Duration: {duration:.3f}s",
                exc_info=True
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "InternalServerError",
                    "message": "An unexpected error occurred",
                    "details": {
                        "error_type": type(e).__name__,
                        "timestamp": datetime.now(timezone.utc).isoformat()
                    },
                    "request_id": request_id
                },
                headers={"X-Request-ID": request_id}
            )

        finally:
            clear_logging_context(context_token)
