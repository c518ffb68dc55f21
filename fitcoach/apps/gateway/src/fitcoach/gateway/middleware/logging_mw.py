"""LoggingMiddleware -- 请求级日志

为每个 HTTP 请求生成 ULID request_id，绑定到 structlog contextvars，
并通过 X-Request-ID 响应头返回。请求耗时以毫秒记录。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

# 探活请求只记 debug
_QUIET_PATHS = ("/health", "/ready")


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件 -- 为每个请求生成 request_id"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("x-request-id") or str(ULID())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        log = structlog.get_logger()
        quiet = request.url.path in _QUIET_PATHS
        if not quiet:
            await log.ainfo("request_started")

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = int((time.monotonic() - start) * 1000)

        if quiet:
            await log.adebug("request_completed", status_code=response.status_code)
        else:
            await log.ainfo(
                "request_completed",
                status_code=response.status_code,
                duration_ms=duration_ms,
            )

        response.headers["X-Request-ID"] = request_id
        return response
