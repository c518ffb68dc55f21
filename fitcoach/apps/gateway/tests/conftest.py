"""apps/gateway 测试配置 -- 内存中的平台模拟 + 同步组件 fixture"""

import asyncio
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from fastapi import FastAPI
from fitcoach.backend import (
    AuthError,
    BackendUnreachableError,
    PushDeliveryError,
    QueryError,
    RealtimeError,
)
from fitcoach.core.models import (
    ChangeType,
    Message,
    MessageChange,
    MessageRow,
    ProfileSummary,
    Session,
)
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def make_session(user_id: str, expires_in: int = 3600, token: str | None = None) -> Session:
    return Session(
        user_id=user_id,
        email=f"{user_id}@example.com",
        access_token=SecretStr(token or f"access-{user_id}"),
        refresh_token=SecretStr(f"refresh-{user_id}"),
        expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
    )


class FakeRepository:
    """内存中的 messages / profiles / notifications / user_push_tokens"""

    def __init__(self) -> None:
        self.messages: list[Message] = []
        self.profiles: dict[str, ProfileSummary] = {}
        self.notifications: list[dict] = []
        self.push_tokens: dict[str, str] = {}
        self.fetch_calls: list[str] = []
        self.profile_calls: list[str] = []
        # 设置后全量拉取在返回前等待该事件（模拟慢请求）
        self.fetch_gate: asyncio.Event | None = None
        self.fail_fetch = False
        self.fail_mark_read = False
        self.fail_insert = False
        self.fail_notification = False
        # fetch_profile 对这些用户返回 None（资料缺失或无法解析）
        self.unreadable_profiles: set[str] = set()
        self._seq = 0
        self._clock = 1000

    def add_profile(self, user_id: str, username: str | None = None) -> ProfileSummary:
        profile = ProfileSummary(id=user_id, username=username or user_id)
        self.profiles[user_id] = profile
        return profile

    def add_message(
        self,
        sender_id: str,
        recipient_id: str,
        minute: int,
        content: str = "",
        read: bool = False,
    ) -> Message:
        """写入一条消息（对方资料自动补齐）"""
        for user_id in (sender_id, recipient_id):
            if user_id not in self.profiles:
                self.add_profile(user_id)
        self._seq += 1
        message = Message(
            id=f"msg-{self._seq:04d}",
            sender_id=sender_id,
            recipient_id=recipient_id,
            content=content or f"{sender_id} says hi @{minute}",
            created_at=BASE_TIME + timedelta(minutes=minute),
            read=read,
        )
        self.messages.append(message)
        return message

    async def fetch_conversation_rows(self, identity: str) -> list[MessageRow]:
        self.fetch_calls.append(identity)
        # 在等待前取快照，模拟服务端在请求发出时的数据
        rows = [
            MessageRow(
                **m.model_dump(),
                sender=self.profiles.get(m.sender_id),
                recipient=self.profiles.get(m.recipient_id),
            )
            for m in self.messages
            if identity in (m.sender_id, m.recipient_id)
        ]
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.fail_fetch:
            raise BackendUnreachableError("http://platform.test/rest/v1/messages", OSError("down"))
        return sorted(rows, key=lambda r: r.created_at, reverse=True)

    async def fetch_thread(self, identity: str, counterpart_id: str) -> list[Message]:
        pair = {identity, counterpart_id}
        thread = [m for m in self.messages if {m.sender_id, m.recipient_id} == pair]
        return sorted(thread, key=lambda m: m.created_at)

    async def fetch_profile(self, user_id: str) -> ProfileSummary | None:
        self.profile_calls.append(user_id)
        if user_id in self.unreadable_profiles:
            return None
        return self.profiles.get(user_id)

    async def mark_read(self, sender_id: str, recipient_id: str) -> int:
        if self.fail_mark_read:
            raise QueryError(503, "unavailable")
        updated = 0
        for i, m in enumerate(self.messages):
            if m.sender_id == sender_id and m.recipient_id == recipient_id and not m.read:
                self.messages[i] = m.model_copy(update={"read": True})
                updated += 1
        return updated

    async def insert_message(self, sender_id: str, recipient_id: str, content: str) -> Message:
        if self.fail_insert:
            raise QueryError(500, "insert failed")
        self._clock += 1
        return self.add_message(sender_id, recipient_id, self._clock, content=content)

    async def upsert_notification(
        self,
        user_id: str,
        sender_id: str,
        type: str,
        content: str,
        related_id: str | None = None,
    ) -> None:
        if self.fail_notification:
            raise QueryError(500, "notifications unavailable")
        self.notifications.append(
            {
                "user_id": user_id,
                "sender_id": sender_id,
                "type": type,
                "content": content,
                "related_id": related_id,
            }
        )

    async def fetch_push_token(self, user_id: str) -> str | None:
        return self.push_tokens.get(user_id)

    async def save_push_token(self, user_id: str, token: str) -> None:
        self.push_tokens[user_id] = token


class FakeRealtime:
    """内存中的实时通道：记录 join/leave，可主动推送变更或断开"""

    def __init__(self) -> None:
        self.topics: dict[str, tuple] = {}
        # 包括已离开的 topic，用于模拟迟到的旧订阅事件
        self.history: dict[str, tuple] = {}
        self.joins: list[str] = []
        self.leaves: list[str] = []
        self.access_tokens: list[str | None] = []
        self.token_updates: list[tuple[str, str]] = []
        self.connected = False
        self.fail_connect = 0
        self.fail_join = 0
        self.join_gate: asyncio.Event | None = None

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        if self.fail_connect > 0:
            self.fail_connect -= 1
            raise RealtimeError("connect refused")
        self.connected = True

    async def subscribe(self, topic, bindings, on_change, on_close=None, access_token=None):
        self.joins.append(topic)
        self.access_tokens.append(access_token)
        if self.join_gate is not None:
            await self.join_gate.wait()
        if self.fail_join > 0:
            self.fail_join -= 1
            raise RealtimeError("join rejected")
        self.topics[topic] = (on_change, on_close)
        self.history[topic] = (on_change, on_close)

    async def set_access_token(self, topic: str, access_token: str) -> None:
        if topic not in self.topics:
            raise RealtimeError(f"not joined: {topic}")
        self.token_updates.append((topic, access_token))

    async def unsubscribe(self, topic: str) -> None:
        if self.topics.pop(topic, None) is not None:
            self.leaves.append(topic)

    async def close(self) -> None:
        self.topics.clear()
        self.connected = False

    async def emit(self, change: MessageChange, topic: str | None = None) -> None:
        """向指定 topic（默认全部）推送变更"""
        targets = [topic] if topic else list(self.topics)
        for name in targets:
            on_change, _ = self.history[name]
            await on_change(change)

    async def emit_insert(self, message: Message) -> None:
        await self.emit(MessageChange(type=ChangeType.INSERT, record=message))

    async def drop(self) -> None:
        """模拟连接断开"""
        self.connected = False
        topics = list(self.topics.values())
        self.topics.clear()
        for _, on_close in topics:
            if on_close is not None:
                await on_close(RealtimeError("connection lost"))


class FakeAuth:
    """内存中的认证服务"""

    def __init__(self) -> None:
        self.users: dict[str, tuple[str, str]] = {}
        self.refresh_calls = 0
        self.sign_out_calls: list[str] = []
        self.refresh_rejected = False
        self.refresh_unreachable = False
        self.sign_out_unreachable = False
        self.confirm_sign_up = False
        self.session_ttl = 3600

    def add_user(self, email: str, password: str, user_id: str) -> None:
        self.users[email] = (password, user_id)

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        stored = self.users.get(email)
        if stored is None or stored[0] != password:
            raise AuthError("Invalid login credentials")
        return make_session(stored[1], expires_in=self.session_ttl)

    async def sign_up(self, email: str, password: str, username: str | None = None):
        user_id = f"user-{len(self.users) + 1}"
        self.users[email] = (password, user_id)
        if self.confirm_sign_up:
            return None
        return make_session(user_id, expires_in=self.session_ttl)

    async def refresh_session(self, refresh_token: str) -> Session:
        self.refresh_calls += 1
        if self.refresh_unreachable:
            raise BackendUnreachableError("http://platform.test/auth/v1/token", OSError("down"))
        if self.refresh_rejected:
            raise AuthError("Invalid Refresh Token")
        user_id = refresh_token.removeprefix("refresh-")
        return make_session(user_id, token=f"access-{user_id}-{self.refresh_calls}")

    async def sign_out(self, access_token: str) -> None:
        self.sign_out_calls.append(access_token)
        if self.sign_out_unreachable:
            raise BackendUnreachableError("http://platform.test/auth/v1/logout", OSError("down"))


class FakeSessionStore:
    """内存中的 SessionStore"""

    def __init__(self, session: Session | None = None) -> None:
        self.session = session

    async def save_session(self, session: Session) -> None:
        self.session = session

    async def load_session(self) -> Session | None:
        return self.session

    async def clear_session(self) -> None:
        self.session = None


class FakePush:
    """记录推送请求的中继"""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.fail = False

    async def send(self, token, title, body, data=None):
        if self.fail:
            raise PushDeliveryError("DeviceNotRegistered")
        self.sent.append({"to": token, "title": title, "body": body, "data": data or {}})


@pytest.fixture
def session_factory() -> Callable[..., Session]:
    return make_session


@pytest.fixture
def repo() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def realtime() -> FakeRealtime:
    return FakeRealtime()


@pytest.fixture
def auth() -> FakeAuth:
    fake = FakeAuth()
    fake.add_user("me@example.com", "pw", "user-me")
    fake.add_user("other@example.com", "pw", "user-other")
    return fake


@pytest.fixture
def session_store() -> FakeSessionStore:
    return FakeSessionStore()


@pytest.fixture
def push() -> FakePush:
    return FakePush()


@pytest.fixture
def wait_until():
    """轮询直到条件成立"""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.005)

    return _wait


@pytest_asyncio.fixture
async def sync(repo, realtime, auth, session_store, push):
    """装配完整同步组件（退避时间缩短、周期重同步关闭）"""
    from fitcoach.gateway.services.conversation_store import ConversationStore
    from fitcoach.gateway.services.coordinator import SyncCoordinator
    from fitcoach.gateway.services.live_channel import LiveUpdateChannel
    from fitcoach.gateway.services.message_service import MessageService
    from fitcoach.gateway.services.resync import ForegroundResynchronizer
    from fitcoach.gateway.services.session_gate import SessionGate
    from fitcoach.gateway.services.sse_hub import SSEHub
    from fitcoach.gateway.services.unread import UnreadAggregator

    gate = SessionGate(auth, session_store)
    store = ConversationStore(repo)
    aggregator = UnreadAggregator(store)
    channel = LiveUpdateChannel(
        realtime,
        store,
        token_provider=lambda: gate.access_token,
        backoff_initial=0.01,
        backoff_factor=2.0,
        backoff_max=0.05,
        jitter=0,
    )
    resync = ForegroundResynchronizer(gate, store, channel, interval_s=0)
    hub = SSEHub()
    coordinator = SyncCoordinator(gate, store, aggregator, channel, resync, hub)
    coordinator.message_service = MessageService(gate, store, repo, push)
    coordinator.hub = hub
    yield coordinator
    await coordinator.stop()


@pytest_asyncio.fixture
async def app(store_group, repo, realtime, auth, push) -> AsyncGenerator[FastAPI, None]:
    """创建测试用 FastAPI app，平台客户端替换为内存模拟"""
    from fitcoach.gateway.main import create_app, install_services

    application = create_app()
    coordinator = install_services(
        application,
        store_group=store_group,
        repository=repo,
        auth=auth,
        realtime=realtime,
        push=push,
        resync_interval_s=0,
    )
    # ASGITransport 不触发 lifespan，这里手动启动
    await coordinator.start()
    yield application
    await coordinator.stop()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
