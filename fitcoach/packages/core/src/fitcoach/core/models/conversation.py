"""Conversation Domain Model

Conversation 由客户端从消息派生，不持久化。
每个会话对方恰好对应一个 Conversation；
last_message_at 等于与该对方往来的所有消息中最大的 created_at。
"""

from datetime import datetime

from pydantic import BaseModel, Field


class Conversation(BaseModel):
    """与某个会话对方的全部消息的摘要"""

    counterpart_id: str = Field(description="会话对方 ID，即会话主键")
    username: str | None = Field(default=None, description="对方用户名")
    avatar_url: str | None = Field(default=None, description="对方头像")
    last_message: str = Field(default="", description="最新一条消息内容")
    last_message_id: str = Field(default="", description="最新一条消息 ID")
    last_message_at: datetime = Field(description="最新一条消息时间")
    unread: bool = Field(
        default=False,
        description="对方发来的消息中至少有一条未读",
    )


class ConversationSnapshot(BaseModel):
    """提供给 UI 消费者的会话列表快照"""

    identity: str | None = Field(default=None, description="当前用户 ID")
    conversations: list[Conversation] = Field(
        default_factory=list,
        description="按 last_message_at 倒序排列的会话",
    )
    unread_count: int = Field(default=0, ge=0, description="有未读消息的会话数")
    version: int = Field(default=0, ge=0, description="单调递增的快照版本")
