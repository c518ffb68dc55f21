"""Backend 包测试 fixtures -- 基于 httpx.MockTransport 的平台模拟"""

from collections.abc import Callable

import httpx
import pytest

Handler = Callable[[httpx.Request], httpx.Response]


class RecordingTransport(httpx.MockTransport):
    """记录所有请求的 MockTransport"""

    def __init__(self, handler: Handler) -> None:
        self.requests: list[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)


@pytest.fixture
def recording_transport() -> Callable[[Handler], RecordingTransport]:
    """构造记录请求的 transport"""
    return RecordingTransport


@pytest.fixture
def message_row() -> dict:
    """全量拉取返回的一行（含嵌入资料）"""
    return {
        "id": "m1",
        "content": "leg day tomorrow?",
        "created_at": "2026-03-01T12:00:00+00:00",
        "read": False,
        "sender_id": "coach-1",
        "recipient_id": "user-me",
        "sender": {"id": "coach-1", "username": "coach", "avatar_url": None},
        "recipient": {"id": "user-me", "username": "me", "avatar_url": None},
    }


@pytest.fixture
def auth_body() -> dict:
    """认证服务 token 响应"""
    return {
        "access_token": "access-abc",
        "refresh_token": "refresh-abc",
        "expires_in": 3600,
        "expires_at": 1772370000,
        "token_type": "bearer",
        "user": {"id": "user-me", "email": "me@example.com"},
    }
