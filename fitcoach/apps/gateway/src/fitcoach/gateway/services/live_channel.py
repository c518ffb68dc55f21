"""LiveUpdateChannel -- 当前身份的 messages 表实时订阅

每个身份同一时刻至多一个活动订阅。每次订阅生成新的 subscription_id，
旧订阅的回调（迟到的变更、关闭通知、重连计时器）凭 subscription_id 识别并丢弃。

状态机: UNSUBSCRIBED -> SUBSCRIBING -> SUBSCRIBED
                         |               |
                         +--> FAILED <---+
                                |
                              BACKOFF -> SUBSCRIBING（指数退避 + 抖动）
任何状态都可以 teardown() 回到 UNSUBSCRIBED。
"""

import asyncio
import contextlib
import random
from collections.abc import Callable
from functools import partial

import structlog
from fitcoach.backend import PostgresChangesBinding, RealtimeClient, RealtimeError
from fitcoach.core.config import (
    REALTIME_BACKOFF_FACTOR,
    REALTIME_BACKOFF_INITIAL,
    REALTIME_BACKOFF_MAX,
)
from fitcoach.core.models import ChangeType, ChannelState, MessageChange, validate_transition
from ulid import ULID

from .conversation_store import ConversationStore

log = structlog.get_logger()

TokenProvider = Callable[[], str | None]
StateListener = Callable[[ChannelState], None]


class ChannelTransitionError(Exception):
    """非法的通道状态流转"""

    def __init__(self, from_state: ChannelState, to_state: ChannelState) -> None:
        super().__init__(f"非法通道状态流转: {from_state} -> {to_state}")
        self.from_state = from_state
        self.to_state = to_state


def message_bindings(identity: str) -> list[PostgresChangesBinding]:
    """当前身份作为收件人或发件人的 messages 变更"""
    return [
        PostgresChangesBinding(
            event="*",
            schema_name="public",
            table="messages",
            filter=f"recipient_id=eq.{identity}",
        ),
        PostgresChangesBinding(
            event="*",
            schema_name="public",
            table="messages",
            filter=f"sender_id=eq.{identity}",
        ),
    ]


class LiveUpdateChannel:
    """实时订阅管理"""

    def __init__(
        self,
        realtime: RealtimeClient,
        store: ConversationStore,
        token_provider: TokenProvider | None = None,
        backoff_initial: float = REALTIME_BACKOFF_INITIAL,
        backoff_factor: float = REALTIME_BACKOFF_FACTOR,
        backoff_max: float = REALTIME_BACKOFF_MAX,
        jitter: float = 0.1,
    ) -> None:
        self._realtime = realtime
        self._store = store
        self._token_provider = token_provider
        self._backoff_initial = backoff_initial
        self._backoff_factor = backoff_factor
        self._backoff_max = backoff_max
        self._jitter = jitter

        self._state = ChannelState.UNSUBSCRIBED
        self._identity: str | None = None
        self._subscription_id: str | None = None
        self._topic: str | None = None
        self._attempt = 0
        self._retry_task: asyncio.Task | None = None
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def subscription_id(self) -> str | None:
        return self._subscription_id

    @property
    def attempt(self) -> int:
        """连续失败次数，订阅成功后归零"""
        return self._attempt

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    async def subscribe(self, identity: str) -> None:
        """为 identity 建立订阅；已有的任何订阅先被拆除"""
        await self.teardown()
        self._identity = identity
        self._attempt = 0
        await self._connect_and_join()

    async def ensure_subscribed(self, identity: str) -> None:
        """订阅不健康（未订阅、失败、退避中或身份不符）时重新订阅"""
        if self._identity == identity and self._state in (
            ChannelState.SUBSCRIBED,
            ChannelState.SUBSCRIBING,
        ):
            return
        log.info(
            "live_channel_resubscribe",
            identity=identity,
            state=self._state,
            previous_identity=self._identity,
        )
        await self.subscribe(identity)

    async def teardown(self) -> None:
        """拆除订阅；之后旧订阅的任何回调都不再生效"""
        topic = self._topic
        self._subscription_id = None
        self._topic = None

        retry_task = self._retry_task
        self._retry_task = None
        if (
            retry_task is not None
            and not retry_task.done()
            and retry_task is not asyncio.current_task()
        ):
            retry_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await retry_task

        if self._state is not ChannelState.UNSUBSCRIBED:
            self._transition(ChannelState.UNSUBSCRIBED)

        if topic is not None:
            try:
                await self._realtime.unsubscribe(topic)
            except RealtimeError as e:
                log.warning("live_channel_unsubscribe_failed", topic=topic, error=str(e))
            log.info("live_channel_torn_down", identity=self._identity, topic=topic)
        self._identity = None

    async def update_access_token(self, token: str) -> None:
        """token 刷新后把新 token 推给当前订阅；未订阅时下次加入自然使用新 token"""
        topic = self._topic
        if topic is None or self._state is not ChannelState.SUBSCRIBED:
            return
        try:
            await self._realtime.set_access_token(topic, token)
        except RealtimeError as e:
            # 连接已断开时由 on_close 触发重连，重连时使用新 token
            log.warning("live_channel_token_update_failed", topic=topic, error=str(e))
            return
        log.info("live_channel_token_updated", identity=self._identity, topic=topic)

    async def _connect_and_join(self) -> None:
        identity = self._identity
        if identity is None:
            return

        sub_id = str(ULID())
        topic = f"messages:{identity}:{sub_id}"
        self._subscription_id = sub_id
        self._topic = topic
        self._transition(ChannelState.SUBSCRIBING)

        try:
            await self._realtime.connect()
            await self._realtime.subscribe(
                topic,
                message_bindings(identity),
                on_change=partial(self._on_change, sub_id),
                on_close=partial(self._on_close, sub_id),
                access_token=self._token_provider() if self._token_provider else None,
            )
        except RealtimeError as e:
            # 已被替换，或 on_close 已先行处理了这次失败
            if self._subscription_id != sub_id or self._state is not ChannelState.SUBSCRIBING:
                return
            log.warning(
                "live_channel_subscribe_failed",
                identity=identity,
                attempt=self._attempt,
                error=str(e),
            )
            self._transition(ChannelState.FAILED)
            self._schedule_retry(sub_id)
            return

        if self._subscription_id != sub_id:
            # 等待回复期间已被拆除或替换，撤销这次孤立的订阅
            with contextlib.suppress(RealtimeError):
                await self._realtime.unsubscribe(topic)
            return

        self._attempt = 0
        self._transition(ChannelState.SUBSCRIBED)
        log.info("live_channel_subscribed", identity=identity, topic=topic)

    async def _on_change(self, sub_id: str, change: MessageChange) -> None:
        identity = self._identity
        if sub_id != self._subscription_id or identity is None:
            log.debug("live_channel_stale_event", subscription_id=sub_id)
            return

        if change.type is ChangeType.INSERT:
            record = change.record
            if record is None or record.counterpart_of(identity) is None:
                return
            await self._store.apply_incoming(record)
        else:
            # 已读标记、删除等无法增量应用，整体重新拉取
            log.debug("live_channel_remote_update", change_type=change.type)
            await self._store.fetch_all(identity)

    async def _on_close(self, sub_id: str, error: RealtimeError) -> None:
        if sub_id != self._subscription_id:
            return
        if self._state not in (ChannelState.SUBSCRIBED, ChannelState.SUBSCRIBING):
            return
        log.warning("live_channel_closed", identity=self._identity, error=str(error))
        self._transition(ChannelState.FAILED)
        self._schedule_retry(sub_id)

    def _backoff_delay(self) -> float:
        delay = min(
            self._backoff_max,
            self._backoff_initial * self._backoff_factor**self._attempt,
        )
        if self._jitter:
            delay *= 1 + random.uniform(-self._jitter, self._jitter)
        return max(0.0, delay)

    def _schedule_retry(self, sub_id: str) -> None:
        delay = self._backoff_delay()
        self._attempt += 1
        self._transition(ChannelState.BACKOFF)
        log.info(
            "live_channel_retry_scheduled",
            identity=self._identity,
            attempt=self._attempt,
            delay_s=round(delay, 3),
        )
        self._retry_task = asyncio.create_task(self._retry_after(sub_id, delay))

    async def _retry_after(self, sub_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        if sub_id != self._subscription_id or self._state is not ChannelState.BACKOFF:
            return
        self._retry_task = None
        await self._connect_and_join()

    def _transition(self, to_state: ChannelState) -> None:
        if not validate_transition(self._state, to_state):
            raise ChannelTransitionError(self._state, to_state)
        self._state = to_state
        for listener in self._listeners:
            try:
                listener(to_state)
            except Exception as e:
                log.error("live_channel_listener_failed", error=str(e))
