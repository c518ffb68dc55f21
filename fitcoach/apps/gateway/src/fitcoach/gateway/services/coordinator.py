"""SyncCoordinator -- 把各同步组件接到一起

身份变化的唯一处理者，按固定顺序执行：
store.reset -> channel.teardown -> fetch_all -> subscribe。
store 先清空，旧身份的数据不会在通道拆除期间继续展示。
同一身份的 token 刷新只把新 token 推给实时通道，不重建订阅。
"""

import structlog
from fitcoach.core.models import ConversationSnapshot

from .conversation_store import ConversationStore
from .live_channel import LiveUpdateChannel
from .resync import ForegroundResynchronizer
from .session_gate import SessionGate
from .sse_hub import SSEHub
from .unread import UnreadAggregator

log = structlog.get_logger()


class SyncCoordinator:
    """同步协调器"""

    def __init__(
        self,
        gate: SessionGate,
        store: ConversationStore,
        aggregator: UnreadAggregator,
        channel: LiveUpdateChannel,
        resync: ForegroundResynchronizer,
        sse_hub: SSEHub | None = None,
    ) -> None:
        self.gate = gate
        self.store = store
        self.aggregator = aggregator
        self.channel = channel
        self.resync = resync
        self._sse_hub = sse_hub

        gate.add_identity_listener(self._on_identity_changed)
        gate.add_refresh_listener(channel.update_access_token)
        store.add_listener(self._publish)

    def snapshot(self) -> ConversationSnapshot:
        """当前会话列表与未读数的一致快照"""
        return ConversationSnapshot(
            identity=self.store.identity,
            conversations=self.store.conversations,
            unread_count=self.aggregator.count,
            version=self.store.version,
        )

    async def start(self) -> None:
        """恢复本地会话（触发首次拉取与订阅）并启动周期重同步"""
        await self.gate.restore()
        self.resync.start()
        log.info(
            "sync_started",
            status=self.gate.status,
            identity=self.gate.identity,
            channel_state=self.channel.state,
        )

    async def stop(self) -> None:
        await self.resync.stop()
        await self.channel.teardown()
        log.info("sync_stopped")

    async def _on_identity_changed(self, old: str | None, new: str | None) -> None:
        log.info("identity_changed", previous=old, identity=new, generation=self.gate.generation)
        generation = self.gate.generation

        self.store.reset(new)
        await self.channel.teardown()
        if new is None:
            return

        await self.store.fetch_all(new)
        # 拉取期间身份可能再次变化，由新的回调接管
        if self.gate.generation != generation:
            return
        await self.channel.subscribe(new)

    def _publish(self) -> None:
        if self._sse_hub is None:
            return
        self._sse_hub.publish(self.snapshot())
