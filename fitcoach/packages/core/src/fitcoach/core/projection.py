"""Conversation Projection -- 从消息派生会话列表

支持全量重建（build_conversations）和单消息应用（apply_message）两种模式，
两者都只在内存中操作，由 ConversationStore 负责调度与并发保护。
"""

import structlog

from .config import MESSAGE_PREVIEW_LENGTH
from .models.conversation import Conversation
from .models.message import Message, MessageRow, ProfileSummary

log = structlog.get_logger()


def _preview(content: str) -> str:
    return content[:MESSAGE_PREVIEW_LENGTH]


def _new_conversation(
    counterpart_id: str,
    message: Message,
    profile: ProfileSummary | None,
) -> Conversation:
    return Conversation(
        counterpart_id=counterpart_id,
        username=profile.username if profile else None,
        avatar_url=profile.avatar_url if profile else None,
        last_message=_preview(message.content),
        last_message_id=message.id,
        last_message_at=message.created_at,
    )


def build_conversations(
    identity: str,
    rows: list[MessageRow],
) -> dict[str, Conversation]:
    """从全量消息行重建会话表

    每个会话对方取 created_at 最大的消息作为摘要（created_at 相同时按 id 取较大者，
    保证多次重建结果一致）；对方发来的消息中只要有一条未读，会话即为未读。

    数据形状异常的行（对方为空、嵌入资料缺失）被跳过，不影响其余行。

    Args:
        identity: 当前用户 ID
        rows: 与 identity 相关的所有消息行，顺序不限

    Returns:
        counterpart_id -> Conversation 的映射表
    """
    conversations: dict[str, Conversation] = {}
    unread_from: set[str] = set()
    skipped = 0

    for row in rows:
        counterpart_id = row.counterpart_of(identity)
        profile = row.counterpart_profile(identity)
        if not counterpart_id or profile is None:
            skipped += 1
            continue

        if row.is_unread_for(identity):
            unread_from.add(counterpart_id)

        current = conversations.get(counterpart_id)
        if current is None or (row.created_at, row.id) > (
            current.last_message_at,
            current.last_message_id,
        ):
            conversations[counterpart_id] = _new_conversation(
                counterpart_id, row, profile
            )

    for counterpart_id in unread_from:
        if counterpart_id in conversations:
            conversations[counterpart_id].unread = True

    if skipped:
        log.warning(
            "conversation_rows_skipped",
            identity=identity,
            skipped=skipped,
            total=len(rows),
        )

    return conversations


def apply_message(
    conversations: dict[str, Conversation],
    identity: str,
    message: Message,
    profile: ProfileSummary | None = None,
) -> bool:
    """将单条新消息应用到会话表（就地修改）

    摘要只在新消息 created_at 严格大于当前 last_message_at 时更新，
    乱序到达的旧消息不会让摘要回退。发给 identity 的未读消息无论新旧都会把会话标为未读。

    Args:
        conversations: counterpart_id -> Conversation 的映射表
        identity: 当前用户 ID
        message: 新消息
        profile: 会话不存在时用于填充展示信息的对方资料

    Returns:
        True 如果会话表发生了变化
    """
    counterpart_id = message.counterpart_of(identity)
    if not counterpart_id:
        return False

    unread = message.is_unread_for(identity)
    current = conversations.get(counterpart_id)

    if current is None:
        conversation = _new_conversation(counterpart_id, message, profile)
        conversation.unread = unread
        conversations[counterpart_id] = conversation
        return True

    update: dict = {}
    if message.created_at > current.last_message_at:
        update.update(
            last_message=_preview(message.content),
            last_message_id=message.id,
            last_message_at=message.created_at,
        )
    if unread and not current.unread:
        update["unread"] = True

    if not update:
        return False
    conversations[counterpart_id] = current.model_copy(update=update)
    return True


def mark_conversation_read(
    conversations: dict[str, Conversation],
    counterpart_id: str,
) -> bool:
    """将会话标记为已读，返回是否发生变化"""
    current = conversations.get(counterpart_id)
    if current is None or not current.unread:
        return False
    conversations[counterpart_id] = current.model_copy(update={"unread": False})
    return True


def count_unread(conversations: dict[str, Conversation]) -> int:
    """有未读消息的会话数（按会话对方计数，而不是按消息行计数）"""
    return sum(1 for conversation in conversations.values() if conversation.unread)


def sorted_conversations(
    conversations: dict[str, Conversation],
) -> list[Conversation]:
    """按最新消息时间倒序排列"""
    return sorted(
        conversations.values(),
        key=lambda c: (c.last_message_at, c.last_message_id),
        reverse=True,
    )
