"""API middleware for request logging."""

from datetime import datetime

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from cart_assistant.analytics.logger import logger


def client_ip(request: Request) -> str:
    """Caller address, honoring proxy headers (X-Forwarded-For, then X-Real-IP)."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Request logging middleware."""

    async def dispatch(self, request: Request, call_next):
        start_time = datetime.now()

        # Log request
        logger.info(f"{request.method} {request.url.path} - {client_ip(request)}")

        response = await call_next(request)

        # Log response
        process_time = (datetime.now() - start_time).total_seconds()
        logger.info(
            f"{request.method} {request.url.path} - "
            f"Status: {response.status_code} - "
            f"Time: {process_time:.3f}s"
        )

        return response
