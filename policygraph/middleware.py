"""
Middleware for request tracing and observability.
"""

import time
import uuid
import logging
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("policygraph")

MUTATING_METHODS = ("POST", "PUT", "PATCH", "DELETE")


class PerformanceMiddleware(BaseHTTPMiddleware):
    """
    Middleware to track request performance and add request IDs.

    Features:
    - Adds X-Request-ID header (uses provided value or generates a UUID)
    - Tracks request duration
    - Logs request/response details
    - Warns about slow writes, which include a graph round trip
    """

    def __init__(self, app: ASGIApp, slow_write_ms: float = 500.0):
        super().__init__(app)
        self.slow_write_ms = slow_write_ms

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        # Store request ID in request state for access by endpoints
        request.state.request_id = request_id

        start_time = time.time()

        logger.info(
            f"Request started | "
            f"request_id={request_id} | "
            f"method={request.method} | "
            f"path={request.url.path} | "
            f"client={request.client.host if request.client else 'unknown'}"
        )

        try:
            response = await call_next(request)

            duration_ms = (time.time() - start_time) * 1000

            logger.info(
                f"Request completed | "
                f"request_id={request_id} | "
                f"method={request.method} | "
                f"path={request.url.path} | "
                f"status={response.status_code} | "
                f"duration_ms={duration_ms:.2f}"
            )

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time-Ms"] = f"{duration_ms:.2f}"

            if duration_ms > self.slow_write_ms and request.method in MUTATING_METHODS:
                logger.warning(
                    f"Slow write request | "
                    f"request_id={request_id} | "
                    f"path={request.url.path} | "
                    f"duration_ms={duration_ms:.2f} | "
                    f"threshold_ms={self.slow_write_ms:.0f}"
                )

            return response

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000

            logger.error(
                f"Request failed | "
                f"request_id={request_id} | "
                f"method={request.method} | "
                f"path={request.url.path} | "
                f"duration_ms={duration_ms:.2f} | "
                f"error={str(e)}"
            )
            raise
