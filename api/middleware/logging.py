"""Request logging middleware."""

import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("billsync.api")

# Successful requests here are logged at DEBUG
QUIET_PATHS = ("/health",)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs each request with a request ID and its duration.

    An incoming X-Request-ID is reused so a request can be followed from
    the proxy through billing logs.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        request.state.request_id = request_id

        path = request.url.path
        quiet = path.startswith(QUIET_PATHS)
        start_time = time.perf_counter()

        if not quiet:
            logger.info(f"[{request_id}] {request.method} {path} - Started")

        try:
            response = await call_next(request)
        except Exception as e:
            duration = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"[{request_id}] {request.method} {path} - "
                f"Error after {duration:.2f}ms: {e}"
            )
            raise

        duration = (time.perf_counter() - start_time) * 1000

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"

        if quiet and response.status_code < 400:
            log_level = logging.DEBUG
        elif response.status_code < 400:
            log_level = logging.INFO
        else:
            log_level = logging.WARNING
        logger.log(
            log_level,
            f"[{request_id}] {request.method} {path} - "
            f"{response.status_code} in {duration:.2f}ms"
        )

        return response
