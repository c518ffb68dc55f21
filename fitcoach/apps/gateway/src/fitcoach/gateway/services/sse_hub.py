"""SSEHub -- 内存中快照广播器

每个订阅者持有一个 asyncio.Queue，支持 subscribe/unsubscribe/publish。
队列写满的订阅者（消费过慢）被移除，其 SSE 连接随后自行结束。
"""

import asyncio
from collections import defaultdict

from fitcoach.core.models import ConversationSnapshot

TOPIC_CONVERSATIONS = "conversations"


class SSEHub:
    """SSE 快照广播器 -- 基于 asyncio.Queue 的发布/订阅模式"""

    def __init__(self, queue_maxsize: int = 100) -> None:
        # topic -> set of asyncio.Queue
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._queue_maxsize = queue_maxsize

    def subscriber_count(self, topic: str = TOPIC_CONVERSATIONS) -> int:
        return len(self._subscribers.get(topic, ()))

    async def subscribe(self, topic: str = TOPIC_CONVERSATIONS) -> asyncio.Queue:
        """订阅指定 topic

        Returns:
            asyncio.Queue 实例，新快照会被推送到此队列
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers[topic].add(queue)
        return queue

    async def unsubscribe(self, queue: asyncio.Queue, topic: str = TOPIC_CONVERSATIONS) -> None:
        """取消订阅"""
        self._subscribers[topic].discard(queue)
        if not self._subscribers[topic]:
            del self._subscribers[topic]

    def publish(
        self,
        snapshot: ConversationSnapshot,
        topic: str = TOPIC_CONVERSATIONS,
    ) -> None:
        """向 topic 的所有订阅者推送快照（同步调用，供会话表变更回调使用）"""
        dead_queues = []
        for queue in self._subscribers.get(topic, set()):
            try:
                queue.put_nowait(snapshot)
            except asyncio.QueueFull:
                dead_queues.append(queue)

        # 清理已满的队列
        for q in dead_queues:
            self._subscribers[topic].discard(q)
        if topic in self._subscribers and not self._subscribers[topic]:
            del self._subscribers[topic]
