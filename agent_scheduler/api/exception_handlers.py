"""Custom exception handlers for FastAPI application"""

from typing import Any, Dict, Optional, Union

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from agent_scheduler.core.exceptions import (
    SchedulerError,
    ScheduleValidationError,
    ScheduleNotFoundError,
    AgentResolutionError,
    ExecutionAlreadyRunningError
)
from agent_scheduler.core.logging_config import get_logger


logger = get_logger(__name__)

# Most specific class first
SCHEDULER_ERROR_STATUS = (
    (ScheduleValidationError, 400),
    (AgentResolutionError, 400),
    (ScheduleNotFoundError, 404),
    (ExecutionAlreadyRunningError, 409),
)

HTTP_ERROR_TYPES = {
    400: "bad_request",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    503: "service_unavailable",
}


def status_code_for(exc: SchedulerError) -> int:
    for error_class, status_code in SCHEDULER_ERROR_STATUS:
        if isinstance(exc, error_class):
            return status_code
    return 500


def error_response(
    request: Request,
    status_code: int,
    content: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None
) -> JSONResponse:
    """Every error body carries the request ID so clients can quote it"""
    content.setdefault("request_id", getattr(request.state, "request_id", None))
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def scheduler_exception_handler(
    request: Request,
    exc: SchedulerError
) -> JSONResponse:
    """
    Map scheduler domain errors onto HTTP statuses.

    Bad input and missing schedules are logged as warnings, an overlapping
    manual run at info, and anything that maps to 500 as an error.
    """
    status_code = status_code_for(exc)

    if status_code >= 500:
        log = logger.error
    elif status_code == 409:
        log = logger.info
    else:
        log = logger.warning
    log(
        "scheduler_error_handled",
        route=request.url.path,
        status_code=status_code,
        **exc.to_dict()
    )

    content = exc.get_api_response()
    content["timestamp"] = exc.timestamp.isoformat()
    return error_response(request, status_code, content)


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError]
) -> JSONResponse:
    """Flatten pydantic errors into field/message pairs"""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        }
        for error in exc.errors()
    ]

    logger.warning(
        "request_validation_failed",
        route=request.url.path,
        fields=[error["field"] for error in errors]
    )

    return error_response(request, 422, {
        "detail": "Validation error",
        "type": "validation_error",
        "errors": errors
    })


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException]
) -> JSONResponse:
    logger.warning(
        "http_exception_handled",
        route=request.url.path,
        status_code=exc.status_code,
        detail=str(exc.detail)
    )

    content: Dict[str, Any] = {"detail": exc.detail}
    if exc.status_code in HTTP_ERROR_TYPES:
        content["type"] = HTTP_ERROR_TYPES[exc.status_code]

    return error_response(
        request, exc.status_code, content, headers=getattr(exc, "headers", None)
    )


async def general_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Log the full error, return a generic body"""
    logger.error(
        "unexpected_exception_handled",
        route=request.url.path,
        error_type=type(exc).__name__,
        error_message=str(exc),
        exc_info=exc
    )

    return error_response(request, 500, {
        "detail": "Internal server error",
        "type": "internal_server_error"
    })


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SchedulerError, scheduler_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
