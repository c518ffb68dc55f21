"""会话路由

GET  /api/session: 当前会话状态
POST /api/session/sign-in: 邮箱密码登录
POST /api/session/sign-up: 注册（需要邮件确认时返回 202）
POST /api/session/sign-out: 登出
POST /api/push-token: 登记设备推送令牌
"""

import structlog
from fastapi import APIRouter, Depends
from fitcoach.backend import AuthError, BackendError
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse, Response

from ..deps import get_message_service, get_session_gate
from ..errors import (
    AUTH_FAILED,
    BACKEND_UNAVAILABLE,
    INVALID_REQUEST,
    error_response,
    not_authenticated,
)
from ..services.message_service import MessageService
from ..services.session_gate import NotAuthenticatedError, SessionGate

log = structlog.get_logger()

router = APIRouter()


class Credentials(BaseModel):
    """登录/注册请求体"""

    email: str = Field(min_length=3, description="邮箱")
    password: str = Field(min_length=1, description="密码")
    username: str | None = Field(default=None, description="注册时的用户名")


class SessionResponse(BaseModel):
    """会话状态响应"""

    status: str
    user_id: str | None = None
    email: str | None = None
    generation: int = 0


class PushTokenRequest(BaseModel):
    token: str = Field(min_length=1, description="设备推送令牌")


def _session_response(gate: SessionGate) -> dict:
    session = gate.session if gate.is_authenticated else None
    return SessionResponse(
        status=gate.status.value,
        user_id=session.user_id if session else None,
        email=session.email if session else None,
        generation=gate.generation,
    ).model_dump()


@router.get("/api/session")
async def get_session(gate: SessionGate = Depends(get_session_gate)):
    return _session_response(gate)


@router.post("/api/session/sign-in")
async def sign_in(body: Credentials, gate: SessionGate = Depends(get_session_gate)):
    try:
        await gate.sign_in(body.email, body.password)
    except AuthError as e:
        return error_response(401, AUTH_FAILED, str(e))
    except BackendError as e:
        return error_response(502, BACKEND_UNAVAILABLE, str(e))
    return _session_response(gate)


@router.post("/api/session/sign-up")
async def sign_up(body: Credentials, gate: SessionGate = Depends(get_session_gate)):
    """注册；平台要求邮件确认时不建立会话，返回 202"""
    try:
        session = await gate.sign_up(body.email, body.password, body.username)
    except AuthError as e:
        return error_response(400, AUTH_FAILED, str(e))
    except BackendError as e:
        return error_response(502, BACKEND_UNAVAILABLE, str(e))
    if session is None:
        return JSONResponse(status_code=202, content=_session_response(gate))
    return JSONResponse(status_code=201, content=_session_response(gate))


@router.post("/api/session/sign-out")
async def sign_out(gate: SessionGate = Depends(get_session_gate)):
    await gate.sign_out()
    return _session_response(gate)


@router.post("/api/push-token", status_code=204)
async def register_push_token(
    body: PushTokenRequest,
    service: MessageService = Depends(get_message_service),
):
    try:
        await service.register_push_token(body.token)
    except NotAuthenticatedError as e:
        return not_authenticated(e.status)
    except ValueError as e:
        return error_response(400, INVALID_REQUEST, str(e))
    except BackendError as e:
        log.warning("push_token_register_failed", error=str(e))
        return error_response(502, BACKEND_UNAVAILABLE, str(e))
    return Response(status_code=204)
