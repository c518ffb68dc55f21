"""ConversationStore -- 会话列表的唯一持有者

进程内只有一个实例；UI 消费者和其他组件只读取它，不自行拉取会话。

并发保护（单线程 asyncio，交错只发生在 await 处）：
- 身份纪元 epoch：reset() 时 +1，之前发起的拉取/增量结果一律丢弃
- 拉取序号 fetch_seq：较早发起的全量拉取若晚于较新的拉取返回，则丢弃
- 变更日志：全量拉取进行期间应用的增量消息和已读标记，在拉取结果上按原顺序重放，
  慢拉取不会覆盖更新的增量摘要
"""

from collections.abc import Callable
from types import MappingProxyType

import structlog
from fitcoach.backend import BackendError
from fitcoach.core.models import Conversation, Message, ProfileSummary
from fitcoach.core.projection import (
    apply_message,
    build_conversations,
    mark_conversation_read,
    sorted_conversations,
)
from fitcoach.core.store import MessageRepository

log = structlog.get_logger()

ChangeListener = Callable[[], None]


class ConversationStore:
    """会话存储"""

    def __init__(self, repository: MessageRepository) -> None:
        self._repo = repository

        self._identity: str | None = None
        self._epoch = 0
        self._conversations: dict[str, Conversation] = {}
        self._profiles: dict[str, ProfileSummary] = {}
        self._version = 0
        self._listeners: list[ChangeListener] = []

        self._fetch_seq = 0
        self._applied_fetch_seq = 0
        self._mutation_seq = 0
        # fetch_seq -> 发起时的 mutation_seq
        self._inflight: dict[int, int] = {}
        # (mutation_seq, Message | 已读的 counterpart_id)
        self._mutations: list[tuple[int, Message | str]] = []

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def version(self) -> int:
        """单调递增，会话表每次实际变化 +1"""
        return self._version

    @property
    def conversations(self) -> list[Conversation]:
        """按最新消息时间倒序的会话列表"""
        return sorted_conversations(self._conversations)

    def as_mapping(self) -> MappingProxyType:
        """counterpart_id -> Conversation 的只读视图"""
        return MappingProxyType(self._conversations)

    def get(self, counterpart_id: str) -> Conversation | None:
        return self._conversations.get(counterpart_id)

    def add_listener(self, listener: ChangeListener) -> None:
        """注册变更监听者，每次会话表变化后同步调用"""
        self._listeners.append(listener)

    def reset(self, identity: str | None) -> None:
        """切换身份：清空会话表并开启新纪元

        调用返回时会话表已为空，新身份的拉取尚未开始，旧身份数据不会再出现。
        """
        self._identity = identity
        self._epoch += 1
        self._profiles.clear()
        self._inflight.clear()
        self._mutations.clear()
        self._conversations = {}
        log.info("conversation_store_reset", identity=identity, epoch=self._epoch)
        # 即使会话表本来为空，身份变化也产生一个新版本的快照
        self._changed()

    async def fetch_all(self, identity: str) -> bool:
        """全量拉取并替换会话表

        Returns:
            True 如果结果被采用；失败或结果过期时返回 False，现有状态不变
        """
        if identity != self._identity:
            log.warning(
                "conversation_fetch_identity_mismatch",
                requested=identity,
                current=self._identity,
            )
            return False

        epoch = self._epoch
        self._fetch_seq += 1
        seq = self._fetch_seq
        self._inflight[seq] = self._mutation_seq

        try:
            rows = await self._repo.fetch_conversation_rows(identity)
        except BackendError as e:
            log.warning(
                "conversation_fetch_failed",
                identity=identity,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        finally:
            started_at = self._inflight.pop(seq, None)
            # 先取出本次拉取需要重放的变更，再修剪日志
            pending = [
                mutation
                for mutation_seq, mutation in self._mutations
                if started_at is not None and mutation_seq > started_at
            ]
            self._prune_mutations()

        if epoch != self._epoch:
            log.info("conversation_fetch_discarded", reason="identity_changed", seq=seq)
            return False
        if seq < self._applied_fetch_seq:
            log.info(
                "conversation_fetch_discarded",
                reason="superseded",
                seq=seq,
                applied_seq=self._applied_fetch_seq,
            )
            return False

        conversations = build_conversations(identity, rows)
        for row in rows:
            profile = row.counterpart_profile(identity)
            if profile is not None:
                self._profiles[profile.id] = profile

        # 在拉取结果上重放拉取期间发生的增量变更
        fetched_ids = {row.id for row in rows}
        replayed = 0
        for mutation in pending:
            if isinstance(mutation, Message):
                if mutation.id in fetched_ids:
                    continue
                counterpart_id = mutation.counterpart_of(identity)
                apply_message(
                    conversations,
                    identity,
                    mutation,
                    self._profiles.get(counterpart_id or ""),
                )
            else:
                mark_conversation_read(conversations, mutation)
            replayed += 1

        self._applied_fetch_seq = seq
        changed = conversations != self._conversations
        self._conversations = conversations

        log.info(
            "conversations_fetched",
            identity=identity,
            seq=seq,
            rows=len(rows),
            conversations=len(conversations),
            replayed=replayed,
            changed=changed,
        )
        if changed:
            self._changed()
        return True

    async def apply_incoming(self, message: Message) -> bool:
        """应用一条新观察到的消息

        摘要只在 created_at 严格更新时替换；未知会话对方的资料会先查询并缓存，
        资料缺失的消息被跳过。

        Returns:
            True 如果会话表发生了变化
        """
        identity = self._identity
        if identity is None:
            return False
        counterpart_id = message.counterpart_of(identity)
        if counterpart_id is None:
            return False

        epoch = self._epoch
        profile = self._profiles.get(counterpart_id)
        if counterpart_id not in self._conversations and profile is None:
            try:
                profile = await self._repo.fetch_profile(counterpart_id)
            except BackendError as e:
                log.warning(
                    "conversation_profile_fetch_failed",
                    counterpart_id=counterpart_id,
                    error=str(e),
                )
                return False
            if epoch != self._epoch:
                return False
            if profile is None:
                log.warning(
                    "conversation_profile_missing",
                    counterpart_id=counterpart_id,
                    message_id=message.id,
                )
                return False
            self._profiles[counterpart_id] = profile

        self._record_mutation(message)
        changed = apply_message(self._conversations, identity, message, profile)
        if changed:
            log.debug(
                "conversation_message_applied",
                counterpart_id=counterpart_id,
                message_id=message.id,
            )
            self._changed()
        return changed

    async def mark_read(self, counterpart_id: str) -> bool:
        """将对方发来的未读消息全部标记为已读

        Returns:
            True 如果服务端更新成功；失败时会话表不变
        """
        identity = self._identity
        if identity is None:
            return False

        epoch = self._epoch
        try:
            updated = await self._repo.mark_read(
                sender_id=counterpart_id,
                recipient_id=identity,
            )
        except BackendError as e:
            log.warning(
                "conversation_mark_read_failed",
                counterpart_id=counterpart_id,
                error=str(e),
            )
            return False
        if epoch != self._epoch:
            return False

        self._record_mutation(counterpart_id)
        changed = mark_conversation_read(self._conversations, counterpart_id)
        log.info(
            "conversation_marked_read",
            counterpart_id=counterpart_id,
            updated_rows=updated,
            changed=changed,
        )
        if changed:
            self._changed()
        return True

    def _record_mutation(self, mutation: Message | str) -> None:
        self._mutation_seq += 1
        if self._inflight:
            self._mutations.append((self._mutation_seq, mutation))

    def _prune_mutations(self) -> None:
        """丢弃不再被任何进行中拉取需要的变更日志"""
        if not self._inflight:
            self._mutations.clear()
            return
        oldest = min(self._inflight.values())
        self._mutations = [m for m in self._mutations if m[0] > oldest]

    def _changed(self) -> None:
        self._version += 1
        self._notify()

    def _notify(self) -> None:
        for listener in self._listeners:
            try:
                listener()
            except Exception as e:
                log.error(
                    "conversation_listener_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
