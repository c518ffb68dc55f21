"""TraceMiddleware -- 为会话相关请求绑定身份与会话对方

identity 取自 SessionGate，counterpart_id 从 /api/conversations/{id}/... 路径中提取，
贯穿该请求触发的同步日志。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response


def counterpart_from_path(path: str) -> str | None:
    """从 /api/conversations/{counterpart_id}[/...] 中提取 counterpart_id"""
    parts = [p for p in path.split("/") if p]
    if len(parts) >= 3 and parts[0] == "api" and parts[1] == "conversations":
        return parts[2]
    return None


class TraceMiddleware(BaseHTTPMiddleware):
    """会话级追踪中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        gate = getattr(request.app.state, "session_gate", None)
        identity = gate.identity if gate is not None else None
        if identity:
            structlog.contextvars.bind_contextvars(identity=identity)

        counterpart_id = counterpart_from_path(request.url.path)
        if counterpart_id:
            structlog.contextvars.bind_contextvars(counterpart_id=counterpart_id)

        return await call_next(request)
