"""ForegroundResynchronizer -- 回到前台、页面聚焦、周期性触发的全量重同步

实时通道在应用后台时可能被系统挂起而丢失事件，这里负责兜底：
刷新 access_token -> 全量拉取 -> 通道不健康时重新订阅。
"""

import asyncio
import contextlib

import structlog
from fitcoach.core.config import RESYNC_INTERVAL
from fitcoach.core.models import AppState, ResyncReason

from .conversation_store import ConversationStore
from .live_channel import LiveUpdateChannel
from .session_gate import SessionGate

log = structlog.get_logger()


class ForegroundResynchronizer:
    """前台重同步器"""

    def __init__(
        self,
        gate: SessionGate,
        store: ConversationStore,
        channel: LiveUpdateChannel,
        interval_s: float = RESYNC_INTERVAL,
    ) -> None:
        self._gate = gate
        self._store = store
        self._channel = channel
        self._interval_s = interval_s

        self._app_state = AppState.ACTIVE
        self._inflight: asyncio.Task | None = None
        self._periodic_task: asyncio.Task | None = None
        self._resync_count = 0

    @property
    def app_state(self) -> AppState:
        return self._app_state

    @property
    def resync_count(self) -> int:
        """实际执行过的重同步次数（合并掉的触发不计）"""
        return self._resync_count

    async def on_app_state(self, state: AppState) -> bool:
        """应用生命周期变化

        Returns:
            True 如果触发了重同步（非 active -> active）
        """
        previous, self._app_state = self._app_state, state
        log.debug("app_state_changed", previous=previous, state=state)
        if state is AppState.ACTIVE and previous is not AppState.ACTIVE:
            await self.resync(ResyncReason.FOREGROUND)
            return True
        return False

    async def on_screen_focus(self, screen: str = "") -> None:
        """会话列表或消息相关页面获得焦点"""
        log.debug("screen_focused", screen=screen)
        await self.resync(ResyncReason.SCREEN_FOCUS)

    async def resync(self, reason: ResyncReason) -> None:
        """执行一次重同步；已有重同步进行中时合并到该次"""
        if self._inflight is not None and not self._inflight.done():
            log.debug("resync_coalesced", reason=reason)
            await asyncio.shield(self._inflight)
            return
        self._inflight = asyncio.create_task(self._do_resync(reason))
        await asyncio.shield(self._inflight)

    async def _do_resync(self, reason: ResyncReason) -> None:
        if not self._gate.is_authenticated:
            log.debug("resync_skipped", reason=reason, status=self._gate.status)
            return

        self._resync_count += 1
        await self._gate.refresh_if_needed()

        # 刷新可能导致登出
        identity = self._gate.identity
        if identity is None:
            return

        fetched = await self._store.fetch_all(identity)
        if self._gate.identity != identity:
            return
        await self._channel.ensure_subscribed(identity)
        log.info(
            "resync_completed",
            reason=reason,
            identity=identity,
            fetched=fetched,
            channel_state=self._channel.state,
        )

    def start(self) -> None:
        """启动周期性重同步；间隔为 0 时不启动"""
        if self._interval_s <= 0 or self._periodic_task is not None:
            return
        self._periodic_task = asyncio.create_task(self._periodic_loop())
        log.info("periodic_resync_started", interval_s=self._interval_s)

    async def stop(self) -> None:
        """停止周期任务并等待进行中的重同步结束"""
        task, self._periodic_task = self._periodic_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        inflight, self._inflight = self._inflight, None
        if inflight is not None and not inflight.done():
            inflight.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await inflight

    async def _periodic_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            # 后台时不发起网络请求，回到前台时会补一次
            if self._app_state is not AppState.ACTIVE:
                continue
            try:
                await self.resync(ResyncReason.PERIODIC)
            except Exception as e:
                log.error("periodic_resync_failed", error=str(e), error_type=type(e).__name__)
