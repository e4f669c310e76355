"""
MODULE OVERVIEW:
FastAPI middleware that stamps every response with its server-side processing time.

WHAT IS HAPPENING HERE:
For a stream the header goes out with the response head, so `X-Process-Time-Ms` measures
time-to-first-byte on the server, not the lifetime of the stream. Comparing it with the
client's connection-duration sample separates server latency from network latency.
"""

import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from loguru import logger

class TimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()

        response = await call_next(request)

        process_time_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Process-Time-Ms"] = f"{process_time_ms:.2f}"

        # Health checks are polled; keep them out of the log
        if request.url.path != "/healthz":
            logger.debug(f"{request.method} {request.url.path} status={response.status_code} completed in {process_time_ms:.2f}ms")

        return response
