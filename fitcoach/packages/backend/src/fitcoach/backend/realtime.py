"""RealtimeClient -- 托管平台实时通道（Phoenix websocket 协议）客户端

一个进程共享一条 websocket 连接，连接上可加入多个 topic。
每个 topic 通过 phx_join 声明 postgres_changes 订阅条件，服务端按条件过滤后推送变更。

帧格式: {"topic": ..., "event": ..., "payload": {...}, "ref": "<n>"}
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import aiohttp
import structlog
from fitcoach.core.models.enums import ChangeType
from fitcoach.core.models.message import Message, MessageChange
from pydantic import ValidationError

from .exceptions import RealtimeError
from .models import PostgresChangesBinding

log = structlog.get_logger()

PROTOCOL_VERSION = "1.0.0"

ChangeHandler = Callable[[MessageChange], Awaitable[None]]
CloseHandler = Callable[[RealtimeError], Awaitable[None]]


@dataclass
class _TopicHandlers:
    on_change: ChangeHandler
    on_close: CloseHandler | None = None


def parse_postgres_change(payload: dict[str, Any]) -> MessageChange | None:
    """解析 postgres_changes 帧的 payload

    Returns:
        MessageChange；payload 形状不符合预期时返回 None
    """
    data = payload.get("data")
    if not isinstance(data, dict):
        return None
    try:
        change_type = ChangeType(data.get("type", ""))
    except ValueError:
        return None

    record = data.get("record") or None
    try:
        return MessageChange(
            type=change_type,
            table=data.get("table", "messages"),
            schema_name=data.get("schema", "public"),
            record=Message.model_validate(record) if record else None,
            old_record=data.get("old_record") or {},
            commit_timestamp=data.get("commit_timestamp"),
        )
    except ValidationError as e:
        log.warning("realtime_change_invalid", error=str(e))
        return None


class RealtimeClient:
    """Phoenix 协议 websocket 客户端

    - connect(): 建立连接并启动接收循环与心跳循环
    - subscribe(): phx_join 并等待 phx_reply
    - unsubscribe(): phx_leave
    - 连接断开时对所有已加入 topic 调用 on_close
    """

    def __init__(
        self,
        realtime_url: str,
        anon_key: str = "",
        heartbeat_interval: float = 30,
        join_timeout: float = 10,
    ) -> None:
        """
        Args:
            realtime_url: websocket 地址（{project}/realtime/v1/websocket）
            anon_key: 平台匿名 API key，作为 apikey 查询参数
            heartbeat_interval: 心跳间隔（秒）
            join_timeout: phx_join 等待回复的超时（秒）
        """
        self._realtime_url = realtime_url
        self._anon_key = anon_key
        self._heartbeat_interval = heartbeat_interval
        self._join_timeout = join_timeout

        self._http: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._receive_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._connect_lock = asyncio.Lock()

        self._ref = 0
        self._pending: dict[str, asyncio.Future] = {}
        self._topics: dict[str, _TopicHandlers] = {}
        self._pending_heartbeat: str | None = None

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    def _next_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    async def connect(self) -> None:
        """建立 websocket 连接（已连接时直接返回）

        Raises:
            RealtimeError: 连接失败
        """
        async with self._connect_lock:
            if self.is_connected:
                return
            if self._http is None or self._http.closed:
                self._http = aiohttp.ClientSession()
            try:
                self._ws = await self._http.ws_connect(
                    self._realtime_url,
                    params={"apikey": self._anon_key, "vsn": PROTOCOL_VERSION},
                )
            except (aiohttp.ClientError, TimeoutError, OSError) as e:
                log.warning(
                    "realtime_connect_failed",
                    url=self._realtime_url,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise RealtimeError(f"实时通道连接失败: {e}") from e

            self._pending_heartbeat = None
            self._receive_task = asyncio.create_task(self._receive_loop(self._ws))
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(self._ws))
            log.info("realtime_connected", url=self._realtime_url)

    async def subscribe(
        self,
        topic: str,
        bindings: list[PostgresChangesBinding],
        on_change: ChangeHandler,
        on_close: CloseHandler | None = None,
        access_token: str | None = None,
    ) -> None:
        """加入 topic 并声明 postgres_changes 订阅条件

        Args:
            topic: 频道名（不含 "realtime:" 前缀）
            bindings: 服务端过滤条件
            on_change: 收到变更时的回调
            on_close: 频道被服务端关闭或连接断开时的回调
            access_token: 用户 access_token，行级安全策略据此过滤

        Raises:
            RealtimeError: 未连接、服务端拒绝或等待回复超时
        """
        if not self.is_connected:
            raise RealtimeError("实时通道未连接")

        full_topic = f"realtime:{topic}"
        payload: dict[str, Any] = {
            "config": {
                "broadcast": {"self": False},
                "presence": {"key": ""},
                "postgres_changes": [b.to_join_config() for b in bindings],
            },
        }
        if access_token:
            payload["access_token"] = access_token

        self._topics[full_topic] = _TopicHandlers(on_change=on_change, on_close=on_close)
        try:
            reply = await self._request(full_topic, "phx_join", payload, self._join_timeout)
        except RealtimeError:
            self._topics.pop(full_topic, None)
            raise

        if reply.get("status") != "ok":
            self._topics.pop(full_topic, None)
            response = reply.get("response") or {}
            raise RealtimeError(f"订阅被拒绝: {response.get('reason') or reply}")

        log.info("realtime_subscribed", topic=full_topic, bindings=len(bindings))

    async def unsubscribe(self, topic: str) -> None:
        """离开 topic；连接已断开时只清理本地状态"""
        full_topic = f"realtime:{topic}"
        if self._topics.pop(full_topic, None) is None:
            return
        if not self.is_connected:
            return
        with contextlib.suppress(RealtimeError):
            await self._request(full_topic, "phx_leave", {}, self._join_timeout)
        log.info("realtime_unsubscribed", topic=full_topic)

    async def set_access_token(self, topic: str, access_token: str) -> None:
        """向已加入的 topic 推送新的 access_token（token 刷新后调用）

        Raises:
            RealtimeError: 未加入该 topic 或发送失败
        """
        full_topic = f"realtime:{topic}"
        if full_topic not in self._topics:
            raise RealtimeError(f"未加入频道: {full_topic}")
        await self._send(
            full_topic,
            "access_token",
            {"access_token": access_token},
            self._next_ref(),
        )
        log.debug("realtime_access_token_sent", topic=full_topic)

    async def close(self) -> None:
        """关闭连接并停止后台任务"""
        self._topics.clear()
        for task in (self._heartbeat_task, self._receive_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._heartbeat_task = None
        self._receive_task = None
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        if self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

    async def _send(self, topic: str, event: str, payload: dict, ref: str | None) -> None:
        if self._ws is None or self._ws.closed:
            raise RealtimeError("实时通道未连接")
        try:
            await self._ws.send_json(
                {"topic": topic, "event": event, "payload": payload, "ref": ref}
            )
        except (aiohttp.ClientError, ConnectionError) as e:
            raise RealtimeError(f"发送失败: {e}") from e

    async def _request(
        self,
        topic: str,
        event: str,
        payload: dict,
        timeout: float,
    ) -> dict[str, Any]:
        """发送一帧并等待同 ref 的 phx_reply"""
        ref = self._next_ref()
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[ref] = future
        try:
            await self._send(topic, event, payload, ref)
            return await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError as e:
            raise RealtimeError(f"{event} 等待回复超时: {topic}") from e
        finally:
            self._pending.pop(ref, None)

    async def _receive_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        error: RealtimeError | None = None
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        frame = msg.json()
                    except ValueError:
                        log.warning("realtime_frame_invalid")
                        continue
                    await self._dispatch(frame)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = RealtimeError(f"连接错误: {ws.exception()}")
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = RealtimeError(f"接收循环异常: {e}")
            log.error("realtime_receive_failed", error=str(e))

        if ws is self._ws:
            await self._handle_disconnect(error or RealtimeError("连接已关闭"))

    async def _dispatch(self, frame: dict[str, Any]) -> None:
        """按事件类型分发一帧"""
        event = frame.get("event")
        topic = frame.get("topic", "")
        payload = frame.get("payload") or {}
        ref = frame.get("ref")

        if event == "phx_reply":
            if ref is not None and ref == self._pending_heartbeat:
                self._pending_heartbeat = None
            future = self._pending.get(ref) if ref is not None else None
            if future is not None and not future.done():
                future.set_result(payload)
            return

        handlers = self._topics.get(topic)
        if handlers is None:
            return

        if event == "postgres_changes":
            change = parse_postgres_change(payload)
            if change is None:
                return
            try:
                await handlers.on_change(change)
            except Exception as e:
                log.error(
                    "realtime_handler_failed",
                    topic=topic,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        elif event in ("phx_error", "phx_close"):
            self._topics.pop(topic, None)
            log.warning("realtime_topic_closed", topic=topic, phx_event=event)
            await self._notify_close(topic, handlers, RealtimeError(f"频道被关闭: {event}"))

    async def _heartbeat_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """定期发送心跳；上一次心跳未得到回复视为连接已失效"""
        while not ws.closed:
            await asyncio.sleep(self._heartbeat_interval)
            if self._pending_heartbeat is not None:
                log.warning("realtime_heartbeat_timeout")
                await ws.close()
                return
            ref = self._next_ref()
            self._pending_heartbeat = ref
            try:
                await self._send("phoenix", "heartbeat", {}, ref)
            except RealtimeError:
                return

    async def _handle_disconnect(self, error: RealtimeError) -> None:
        """连接断开：失败所有等待中的请求，通知所有 topic"""
        log.warning("realtime_disconnected", error=str(error))
        self._ws = None
        if self._heartbeat_task is not None and not self._heartbeat_task.done():
            self._heartbeat_task.cancel()

        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

        topics = list(self._topics.items())
        self._topics.clear()
        for topic, handlers in topics:
            await self._notify_close(topic, handlers, error)

    async def _notify_close(
        self, topic: str, handlers: _TopicHandlers, error: RealtimeError
    ) -> None:
        if handlers.on_close is None:
            return
        try:
            await handlers.on_close(error)
        except Exception as e:
            log.error(
                "realtime_close_handler_failed",
                topic=topic,
                error=str(e),
                error_type=type(e).__name__,
            )
