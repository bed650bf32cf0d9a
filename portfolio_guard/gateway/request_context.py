# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Request Context Middleware

Request ID propagation, client IP resolution and request timing.

The resolved client IP is the identity every admission check keys on,
so X-Forwarded-For is only honoured when the direct peer is a
configured trusted proxy.

Usage:
    app.add_middleware(RequestContextMiddleware, trusted_proxies=["10.0.0.1"])

    @router.get("/api/endpoint")
    async def endpoint(request: Request):
        ip = client_ip(request)
"""

import logging
import secrets
import time
from collections.abc import Callable

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from ..observability.logging import clear_request_context, log_request_end, set_request_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
SESSION_ID_HEADER = "X-Session-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware for request ID propagation and context management.

    Features:
    - Generates unique request ID or uses X-Request-ID header
    - Sets logging context variables for the request lifecycle
    - Adds X-Request-ID to response headers
    - Logs request end with timing
    """

    def __init__(
        self,
        app,
        header_name: str = REQUEST_ID_HEADER,
        generate_id: Callable[[], str] | None = None,
        log_requests: bool = True,
        trusted_proxies: list[str] | None = None,
    ):
        super().__init__(app)
        self.header_name = header_name
        self.generate_id = generate_id or (lambda: secrets.token_hex(16))
        self.log_requests = log_requests
        self.trusted_proxies = set(trusted_proxies or [])

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = self._sanitize_request_id(
            request.headers.get(self.header_name) or self.generate_id()
        )
        ip = self._get_client_ip(request)
        start = time.perf_counter()

        request.state.request_id = request_id
        request.state.client_ip = ip
        set_request_context(
            request_id=request_id,
            session_id=request.headers.get(SESSION_ID_HEADER),
            client_ip=ip,
        )

        try:
            response = await call_next(request)
            response.headers[self.header_name] = request_id
            if self.log_requests:
                log_request_end(
                    request.method,
                    request.url.path,
                    request_id,
                    response.status_code,
                    round((time.perf_counter() - start) * 1000, 2),
                )
            return response
        except Exception as e:
            logger.error(
                f"Request failed: {request.method} {request.url.path} error={type(e).__name__}",
                exc_info=True,
            )
            raise
        finally:
            clear_request_context()

    def _sanitize_request_id(self, request_id: str) -> str:
        """Limit length and keep only alphanumerics, dashes and underscores."""
        sanitized = "".join(c for c in request_id[:64] if c.isalnum() or c in "-_")
        return sanitized or self.generate_id()

    def _get_client_ip(self, request: Request) -> str | None:
        """Trust X-Forwarded-For / X-Real-IP only from trusted proxies."""
        client_host = request.client.host if request.client else None

        if client_host in self.trusted_proxies:
            forwarded_for = request.headers.get("X-Forwarded-For")
            if forwarded_for:
                return forwarded_for.split(",")[0].strip()
            real_ip = request.headers.get("X-Real-IP")
            if real_ip:
                return real_ip.strip()

        return client_host


def client_ip(request: Request) -> str | None:
    """Client IP resolved by the middleware, falling back to the direct peer."""
    ip = getattr(request.state, "client_ip", None)
    if ip:
        return ip
    return request.client.host if request.client else None


def request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "") or ""


__all__ = ["RequestContextMiddleware", "client_ip", "request_id", "REQUEST_ID_HEADER"]
