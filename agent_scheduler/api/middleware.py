"""API Middleware for request processing"""

import time
from typing import Any, Callable, Dict
from uuid import uuid4
import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from agent_scheduler.core.config import settings
from agent_scheduler.core.logging_config import get_logger
from agent_scheduler.core.monitoring import MetricsCollector


logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Polled by probes and scrapers; logged only on error unless LOG_HEALTH_CHECKS
QUIET_PATHS = frozenset({"/health", "/metrics", "/favicon.ico"})


def route_template(request: Request) -> str:
    """Matched route path, e.g. /api/v1/schedules/{schedule_id}"""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


def _schedule_fields(request: Request) -> Dict[str, Any]:
    # Populated by the router once the request has been matched
    path_params = request.scope.get("path_params") or {}
    return {
        key: path_params[key]
        for key in ("schedule_id", "execution_id")
        if key in path_params
    }


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Correlates each request with a request ID and writes the access log.

    The ID comes from an incoming X-Request-ID header or is generated, is
    stored on request.state, echoed in the response header and bound to the
    structlog context so every log line emitted while serving the request
    (including store and engine calls) carries it. Completion lines also
    name the schedule or execution the route addressed.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id

        quiet = (
            request.url.path in QUIET_PATHS
            and not (settings.LOG_HEALTH_CHECKS or settings.DEBUG)
        )
        started = time.perf_counter()

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            if not quiet:
                logger.info(
                    "request_started",
                    method=request.method,
                    path=request.url.path,
                    client_host=request.client.host if request.client else None,
                )

            try:
                response = await call_next(request)
            except Exception as e:
                elapsed = time.perf_counter() - started
                MetricsCollector.record_http_request(
                    request.method, route_template(request), 500, elapsed
                )
                logger.error(
                    "request_failed",
                    method=request.method,
                    path=request.url.path,
                    error_type=type(e).__name__,
                    response_time_ms=int(elapsed * 1000),
                    **_schedule_fields(request)
                )
                raise

            elapsed = time.perf_counter() - started
            MetricsCollector.record_http_request(
                request.method, route_template(request), response.status_code, elapsed
            )

            if not quiet or response.status_code >= 400:
                log = logger.warning if response.status_code >= 500 else logger.info
                log(
                    "request_completed",
                    method=request.method,
                    route=route_template(request),
                    status_code=response.status_code,
                    response_time_ms=int(elapsed * 1000),
                    **_schedule_fields(request)
                )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Last-resort handler for exceptions no registered handler claimed.

    Responds with the same JSON error envelope the exception handlers use.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            request_id = getattr(request.state, "request_id", None)

            logger.error(
                "unhandled_exception",
                request_id=request_id,
                error_type=type(e).__name__,
                error_message=str(e),
                exc_info=True
            )

            return JSONResponse(
                status_code=500,
                content={
                    "detail": "Internal server error",
                    "type": "internal_server_error",
                    "request_id": request_id
                }
            )
