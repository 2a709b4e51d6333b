import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from sentinel.security.metrics import request_latency

logger = logging.getLogger("performance")

SLOW_REQUEST_MS = 1000


class TimingMiddleware(BaseHTTPMiddleware):
    """Outermost layer: times gate plus handler, so denials are measured too"""

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        response: Response = await call_next(request)
        elapsed = time.perf_counter() - started
        elapsed_ms = elapsed * 1000

        request_latency.labels(method=request.method, status=str(response.status_code)).observe(elapsed)
        if elapsed_ms > SLOW_REQUEST_MS:
            logger.warning(f"🐢 Slow request {request.method} {request.url.path} took {elapsed_ms:.2f} ms")

        response.headers["X-Process-Time-ms"] = f"{elapsed_ms:.2f}"
        return response
