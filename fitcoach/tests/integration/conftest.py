"""集成测试共享 fixture

真实的 RestClient / AuthClient / RealtimeClient / BackendMessageRepository / SQLite 会话库，
托管平台由内存中的 FakePlatform 模拟：
- 数据 API 与认证服务通过 httpx.MockTransport 接入
- 实时通道是 aiohttp TestServer 上的最小 Phoenix websocket 服务端
"""

import itertools
import json
import re
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import httpx
import pytest_asyncio
from aiohttp import test_utils, web
from fitcoach.backend import AuthClient, BackendMessageRepository, RealtimeClient, RestClient
from httpx import ASGITransport, AsyncClient

PLATFORM_URL = "http://platform.test"
BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

_EQ_VALUE = re.compile(r"\.eq\.([^,)]+)")


class FakePlatform:
    """内存中的托管平台：auth + PostgREST + Phoenix realtime"""

    def __init__(self) -> None:
        self.users: dict[str, tuple[str, str]] = {}
        self.profiles: dict[str, dict] = {}
        self.messages: list[dict] = []
        self.notifications: list[dict] = []
        self.push_tokens: dict[str, str] = {}
        self.requests: list[httpx.Request] = []
        # (ws, full_topic, [(column, value)])
        self.joined: list[tuple[web.WebSocketResponse, str, list[tuple[str, str]]]] = []
        self.sockets: list[web.WebSocketResponse] = []
        # (full_topic, access_token)：join 之后推送的 access_token 帧
        self.token_frames: list[tuple[str, str]] = []
        self.realtime_url = ""
        self.expires_in = 3600
        self.refresh_count = 0
        self._ids = itertools.count(1)
        self._minutes = itertools.count(1000)

    # ---- 数据准备 ----

    def add_user(self, user_id: str, email: str, password: str = "pw") -> None:
        self.users[email] = (password, user_id)
        self.profiles[user_id] = {"id": user_id, "username": user_id, "avatar_url": None}

    def add_message(
        self,
        sender_id: str,
        recipient_id: str,
        minute: int | None = None,
        content: str = "",
        read: bool = False,
    ) -> dict:
        """直接写库，不推送实时事件（模拟实时通道错过的消息）"""
        if minute is None:
            minute = next(self._minutes)
        row = {
            "id": f"msg-{next(self._ids):04d}",
            "sender_id": sender_id,
            "recipient_id": recipient_id,
            "content": content or f"{sender_id} @{minute}",
            "created_at": (BASE_TIME + timedelta(minutes=minute)).isoformat(),
            "read": read,
        }
        self.messages.append(row)
        return row

    async def deliver(self, sender_id: str, recipient_id: str, content: str = "") -> dict:
        """写库并推送 INSERT 事件"""
        row = self.add_message(sender_id, recipient_id, content=content)
        await self.broadcast("INSERT", row)
        return row

    async def broadcast(self, change_type: str, row: dict) -> None:
        for ws, topic, filters in list(self.joined):
            if ws.closed:
                continue
            if not any(row.get(column) == value for column, value in filters):
                continue
            await ws.send_json(
                {
                    "topic": topic,
                    "event": "postgres_changes",
                    "payload": {
                        "data": {
                            "type": change_type,
                            "table": "messages",
                            "schema": "public",
                            "commit_timestamp": row["created_at"],
                            "record": row,
                            "old_record": {},
                        }
                    },
                    "ref": None,
                }
            )

    def active_topics(self) -> list[str]:
        return [topic for ws, topic, _ in self.joined if not ws.closed]

    # ---- httpx MockTransport ----

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith("/auth/v1"):
            return self._handle_auth(request, path.removeprefix("/auth/v1"))
        if path.startswith("/rest/v1"):
            table = path.removeprefix("/rest/v1/")
            return self._handle_rest(request, table)
        return httpx.Response(404)

    def _session_body(self, user_id: str, email: str, access_token: str | None = None) -> dict:
        return {
            "access_token": access_token or f"access-{user_id}",
            "refresh_token": f"refresh-{user_id}",
            "expires_in": self.expires_in,
            "user": {"id": user_id, "email": email},
        }

    def _handle_auth(self, request: httpx.Request, path: str) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        if path == "/logout":
            return httpx.Response(204)
        if path == "/signup":
            user_id = f"user-{len(self.users) + 1}"
            self.add_user(user_id, body["email"], body["password"])
            return httpx.Response(200, json=self._session_body(user_id, body["email"]))
        if path == "/token":
            grant = request.url.params.get("grant_type")
            if grant == "password":
                stored = self.users.get(body.get("email", ""))
                if stored is None or stored[0] != body.get("password"):
                    return httpx.Response(
                        400, json={"error_description": "Invalid login credentials"}
                    )
                return httpx.Response(200, json=self._session_body(stored[1], body["email"]))
            if grant == "refresh_token":
                user_id = body.get("refresh_token", "").removeprefix("refresh-")
                email = next((e for e, (_, uid) in self.users.items() if uid == user_id), "")
                self.refresh_count += 1
                token = f"access-{user_id}-refreshed-{self.refresh_count}"
                return httpx.Response(200, json=self._session_body(user_id, email, token))
        return httpx.Response(404)

    def _handle_rest(self, request: httpx.Request, table: str) -> httpx.Response:
        params = request.url.params
        body = json.loads(request.content) if request.content else {}

        if table == "messages":
            if request.method == "GET":
                return httpx.Response(200, json=self._select_messages(params))
            if request.method == "POST":
                row = self.add_message(
                    body["sender_id"], body["recipient_id"], content=body["content"]
                )
                return httpx.Response(201, json=[row])
            if request.method == "PATCH":
                updated = []
                for row in self.messages:
                    if (
                        params.get("sender_id") == f"eq.{row['sender_id']}"
                        and params.get("recipient_id") == f"eq.{row['recipient_id']}"
                        and not row["read"]
                    ):
                        row.update(body)
                        updated.append(row)
                return httpx.Response(200, json=updated)

        if table == "profiles":
            user_id = params.get("id", "").removeprefix("eq.")
            profile = self.profiles.get(user_id)
            return httpx.Response(200, json=[profile] if profile else [])

        if table == "notifications":
            if request.method == "POST":
                self.notifications.append(body)
                return httpx.Response(201, json=[body])
            return httpx.Response(200, json=[])

        if table == "user_push_tokens":
            user_id = params.get("user_id", "").removeprefix("eq.")
            if request.method == "GET":
                token = self.push_tokens.get(user_id)
                rows = [{"user_id": user_id, "token": token}] if token else []
                return httpx.Response(200, json=rows)
            self.push_tokens[body.get("user_id") or user_id] = body["token"]
            return httpx.Response(201, json=[body])

        return httpx.Response(404, json={"message": f"unknown table {table}"})

    def _select_messages(self, params: httpx.QueryParams) -> list[dict]:
        ids = _EQ_VALUE.findall(params.get("or", ""))
        if "profiles!" in params.get("select", ""):
            identity = ids[0]
            rows = [
                dict(
                    row,
                    sender=self.profiles.get(row["sender_id"]),
                    recipient=self.profiles.get(row["recipient_id"]),
                )
                for row in self.messages
                if identity in (row["sender_id"], row["recipient_id"])
            ]
            return sorted(rows, key=lambda r: r["created_at"], reverse=True)
        pair = set(ids)
        rows = [m for m in self.messages if {m["sender_id"], m["recipient_id"]} == pair]
        return sorted(rows, key=lambda r: r["created_at"])

    # ---- Phoenix websocket ----

    async def ws_handler(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.sockets.append(ws)
        async for msg in ws:
            frame = msg.json()
            event = frame["event"]
            if event == "phx_join":
                filters = []
                for binding in frame["payload"]["config"]["postgres_changes"]:
                    column, _, value = binding["filter"].partition("=eq.")
                    filters.append((column, value))
                self.joined.append((ws, frame["topic"], filters))
            elif event == "phx_leave":
                self.joined = [j for j in self.joined if j[1] != frame["topic"]]
            elif event == "access_token":
                self.token_frames.append((frame["topic"], frame["payload"]["access_token"]))
            await ws.send_json(
                {
                    "topic": frame["topic"],
                    "event": "phx_reply",
                    "payload": {"status": "ok", "response": {}},
                    "ref": frame["ref"],
                }
            )
        return ws

    async def close_topic(self, topic: str, event: str = "phx_close") -> None:
        """服务端单方面关闭一个频道，连接保持"""
        for ws, joined_topic, _ in list(self.joined):
            if joined_topic == topic and not ws.closed:
                await ws.send_json({"topic": topic, "event": event, "payload": {}, "ref": None})
        self.joined = [j for j in self.joined if j[1] != topic]

    async def drop_connections(self) -> None:
        """服务端断开所有 websocket"""
        for ws in list(self.sockets):
            await ws.close()
        self.joined.clear()


@pytest_asyncio.fixture
async def platform() -> AsyncGenerator[FakePlatform, None]:
    fake = FakePlatform()
    fake.add_user("user-me", "me@example.com")
    fake.add_user("user-other", "other@example.com")
    fake.add_user("coach", "coach@example.com")

    app = web.Application()
    app.router.add_get("/realtime/v1/websocket", fake.ws_handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    fake.realtime_url = str(server.make_url("/realtime/v1/websocket"))
    yield fake
    await server.close()


@pytest_asyncio.fixture
async def integration_app(store_group, platform: FakePlatform):
    """集成测试用 FastAPI app：真实客户端 + 模拟平台"""
    from fitcoach.gateway.main import create_app, install_services

    app = create_app()

    transport = httpx.MockTransport(platform.handle)
    rest = RestClient(f"{PLATFORM_URL}/rest/v1", anon_key="anon", transport=transport)
    auth = AuthClient(f"{PLATFORM_URL}/auth/v1", anon_key="anon", transport=transport)
    realtime = RealtimeClient(platform.realtime_url, anon_key="anon", join_timeout=2)

    coordinator = install_services(
        app,
        store_group=store_group,
        repository=BackendMessageRepository(rest),
        auth=auth,
        realtime=realtime,
        rest_client=rest,
        resync_interval_s=0,
    )
    await coordinator.start()

    yield app

    await coordinator.stop()
    await realtime.close()
    await rest.aclose()
    await auth.aclose()


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac
