# middleware/timing.py
"""Request id and processing-time headers for every response."""
import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)


class TimingMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with an id (reusing an incoming ``X-Request-ID``) and
    reports how long it took. Slow auth calls are logged as warnings.
    """

    def __init__(self, app, time_header: str = "X-Process-Time", slow_request_seconds: float = 1.0):
        super().__init__(app)
        self.time_header = time_header
        self.slow_request_seconds = slow_request_seconds

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        started = time.perf_counter()

        response = await call_next(request)

        process_time = time.perf_counter() - started
        response.headers[self.time_header] = f"{process_time:.4f} sec"
        response.headers["X-Request-ID"] = request.state.request_id
        if process_time > self.slow_request_seconds:
            logger.warning(f"Slow request {request.method} {request.url.path}: {process_time:.2f}s")
        return response
