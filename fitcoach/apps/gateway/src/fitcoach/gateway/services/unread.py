"""UnreadAggregator -- 未读会话数

未读数始终从 ConversationStore 派生，不单独计数，不会与会话列表漂移。
"""

from collections.abc import Callable

import structlog
from fitcoach.core.projection import count_unread

from .conversation_store import ConversationStore

log = structlog.get_logger()

CountListener = Callable[[int], None]


class UnreadAggregator:
    """未读会话数聚合器

    每次会话表变化后重新计算；只有数值变化时通知监听者。
    """

    def __init__(self, store: ConversationStore) -> None:
        self._store = store
        self._count = count_unread(store.as_mapping())
        self._listeners: list[CountListener] = []
        store.add_listener(self._recompute)

    @property
    def count(self) -> int:
        return self._count

    def add_listener(self, listener: CountListener) -> None:
        self._listeners.append(listener)

    def _recompute(self) -> None:
        count = count_unread(self._store.as_mapping())
        if count == self._count:
            return
        previous, self._count = self._count, count
        log.debug("unread_count_changed", previous=previous, count=count)
        for listener in self._listeners:
            try:
                listener(count)
            except Exception as e:
                log.error("unread_listener_failed", error=str(e))
