"""依赖注入模块 -- 通过 FastAPI Depends 注入同步组件

组件实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from fastapi import Request

from .services.coordinator import SyncCoordinator
from .services.message_service import MessageService
from .services.session_gate import SessionGate
from .services.sse_hub import SSEHub


def get_sse_hub(request: Request) -> SSEHub:
    return request.app.state.sse_hub


def get_session_gate(request: Request) -> SessionGate:
    return request.app.state.session_gate


def get_coordinator(request: Request) -> SyncCoordinator:
    return request.app.state.coordinator


def get_message_service(request: Request) -> MessageService:
    return request.app.state.message_service
