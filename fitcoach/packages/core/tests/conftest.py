"""packages/core 测试配置 -- 核心层 fixture"""

from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio
from fitcoach.core.models import Message, MessageRow, ProfileSummary

ME = "user-me"
BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest_asyncio.fixture
async def core_db_path(tmp_path: Path) -> Path:
    """核心层临时数据库路径"""
    return tmp_path / "core_test.db"


@pytest_asyncio.fixture
async def core_db(core_db_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """核心层已初始化数据库连接"""
    from fitcoach.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(core_db_path))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest.fixture
def me() -> str:
    return ME


@pytest.fixture
def make_row() -> Callable[..., MessageRow]:
    """构造消息行；minute 为相对 BASE_TIME 的分钟偏移"""
    counter = {"n": 0}

    def _make(
        sender_id: str,
        recipient_id: str,
        minute: int,
        content: str = "",
        read: bool = False,
        id: str | None = None,
        with_profiles: bool = True,
    ) -> MessageRow:
        counter["n"] += 1
        return MessageRow(
            id=id or f"msg-{counter['n']:04d}",
            sender_id=sender_id,
            recipient_id=recipient_id,
            content=content or f"{sender_id} -> {recipient_id} @{minute}",
            created_at=BASE_TIME + timedelta(minutes=minute),
            read=read,
            sender=ProfileSummary(id=sender_id, username=sender_id) if with_profiles else None,
            recipient=(
                ProfileSummary(id=recipient_id, username=recipient_id) if with_profiles else None
            ),
        )

    return _make


@pytest.fixture
def make_message(make_row) -> Callable[..., Message]:
    """构造不带嵌入资料的消息（实时通道推送的形状）"""

    def _make(*args, **kwargs) -> Message:
        row = make_row(*args, **kwargs)
        return Message.model_validate(row.model_dump(exclude={"sender", "recipient"}))

    return _make
