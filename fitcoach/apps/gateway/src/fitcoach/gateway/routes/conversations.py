"""会话与消息路由

GET  /api/conversations: 会话列表快照（含未读数）
GET  /api/unread-count: 未读会话数
GET  /api/conversations/{counterpart_id}/messages: 打开会话（会把对方消息标为已读）
POST /api/conversations/{counterpart_id}/messages: 发送消息
POST /api/conversations/{counterpart_id}/read: 标记已读

会话列表只从 ConversationStore 读取，不会为此发起网络请求。
"""

import structlog
from fastapi import APIRouter, Depends
from fitcoach.backend import BackendError
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from ..deps import get_coordinator, get_message_service
from ..errors import BACKEND_UNAVAILABLE, INVALID_REQUEST, error_response, not_authenticated
from ..services.coordinator import SyncCoordinator
from ..services.message_service import MessageService
from ..services.session_gate import NotAuthenticatedError

log = structlog.get_logger()

router = APIRouter()


class SendMessageRequest(BaseModel):
    """发送消息请求体"""

    content: str = Field(description="消息正文")


@router.get("/api/conversations")
async def list_conversations(coordinator: SyncCoordinator = Depends(get_coordinator)):
    gate = coordinator.gate
    if not gate.is_authenticated:
        return not_authenticated(gate.status)
    return coordinator.snapshot().model_dump(mode="json")


@router.get("/api/unread-count")
async def unread_count(coordinator: SyncCoordinator = Depends(get_coordinator)):
    gate = coordinator.gate
    if not gate.is_authenticated:
        return not_authenticated(gate.status)
    return {"unread_count": coordinator.aggregator.count}


@router.get("/api/conversations/{counterpart_id}/messages")
async def open_thread(
    counterpart_id: str,
    service: MessageService = Depends(get_message_service),
):
    try:
        messages = await service.open_thread(counterpart_id)
    except NotAuthenticatedError as e:
        return not_authenticated(e.status)
    except BackendError as e:
        log.warning("thread_fetch_failed", error=str(e))
        return error_response(502, BACKEND_UNAVAILABLE, str(e))
    return {
        "counterpart_id": counterpart_id,
        "messages": [m.model_dump(mode="json") for m in messages],
    }


@router.post("/api/conversations/{counterpart_id}/messages")
async def send_message(
    counterpart_id: str,
    body: SendMessageRequest,
    service: MessageService = Depends(get_message_service),
):
    """发送消息；写入失败返回 502，通知/推送失败不影响结果"""
    try:
        message = await service.send_message(counterpart_id, body.content)
    except NotAuthenticatedError as e:
        return not_authenticated(e.status)
    except ValueError as e:
        return error_response(400, INVALID_REQUEST, str(e))
    except BackendError as e:
        log.warning("message_send_failed", error=str(e))
        return error_response(502, BACKEND_UNAVAILABLE, str(e))
    return JSONResponse(status_code=201, content=message.model_dump(mode="json"))


@router.post("/api/conversations/{counterpart_id}/read")
async def mark_read(
    counterpart_id: str,
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    gate = coordinator.gate
    if not gate.is_authenticated:
        return not_authenticated(gate.status)
    ok = await coordinator.store.mark_read(counterpart_id)
    if not ok:
        return error_response(502, BACKEND_UNAVAILABLE, "Failed to mark conversation as read")
    return {
        "counterpart_id": counterpart_id,
        "unread_count": coordinator.aggregator.count,
    }
