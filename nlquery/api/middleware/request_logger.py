"""Request logging middleware with per-request timing."""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class RequestLoggerMiddleware(BaseHTTPMiddleware):
    """Log each request and tag the response with its id and latency."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Log request details and timing.

        Args:
            request: FastAPI request
            call_next: Next middleware/handler

        Returns:
            Response object
        """
        start_time = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or f"req-{uuid.uuid4().hex[:12]}"
        request.state.request_id = request_id

        client = request.client.host if request.client else "unknown"
        logger.info(
            f"→ {request.method} {request.url.path} from {client}",
            extra={"request_id": request_id},
        )

        try:
            response = await call_next(request)
        except Exception as e:
            latency_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"✗ {request.method} {request.url.path} failed in {latency_ms:.0f}ms: {e}",
                extra={"request_id": request_id},
            )
            raise

        latency_ms = (time.perf_counter() - start_time) * 1000
        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            f"← {request.method} {request.url.path} {response.status_code} in {latency_ms:.0f}ms",
            extra={"request_id": request_id},
        )

        response.headers["X-Response-Time"] = f"{latency_ms:.2f}ms"
        response.headers["X-Request-ID"] = request_id
        return response
