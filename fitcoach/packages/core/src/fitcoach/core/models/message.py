"""Message Domain Model

messages 表由托管平台持有，客户端只读写。
created_at 一旦写入不可变；read 由接收方客户端从 false 置为 true，仅一次。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import ChangeType


class ProfileSummary(BaseModel):
    """profiles 表中用于展示的对方资料"""

    id: str = Field(description="用户 ID")
    username: str | None = Field(default=None, description="用户名")
    avatar_url: str | None = Field(default=None, description="头像 URL")


class Message(BaseModel):
    """Message -- 一对一聊天消息

    (sender_id, recipient_id, created_at) 作为隐式排序键；
    只有 id 相同的两条消息才视为同一条。
    """

    id: str = Field(description="消息 ID")
    sender_id: str = Field(description="发送者 ID")
    recipient_id: str = Field(description="接收者 ID")
    content: str = Field(default="", description="文本内容")
    created_at: datetime = Field(description="创建时间，不可变")
    read: bool = Field(default=False, description="接收方是否已读")

    def counterpart_of(self, identity: str) -> str | None:
        """返回相对 identity 的会话对方 ID，消息与 identity 无关时返回 None"""
        if self.sender_id == identity:
            return self.recipient_id
        if self.recipient_id == identity:
            return self.sender_id
        return None

    def is_unread_for(self, identity: str) -> bool:
        """是否为发给 identity 且尚未读的消息"""
        return self.recipient_id == identity and not self.read


class MessageRow(Message):
    """全量拉取返回的消息行，附带嵌入查询的 sender / recipient 资料

    嵌入的资料行可能缺失（对方资料被删除等），此时为 None。
    """

    sender: ProfileSummary | None = Field(default=None, description="发送者资料")
    recipient: ProfileSummary | None = Field(default=None, description="接收者资料")

    def counterpart_profile(self, identity: str) -> ProfileSummary | None:
        """返回会话对方的资料"""
        if self.sender_id == identity:
            return self.recipient
        if self.recipient_id == identity:
            return self.sender
        return None


class MessageChange(BaseModel):
    """实时通道推送的 messages 表变更事件"""

    type: ChangeType = Field(description="变更类型")
    table: str = Field(default="messages", description="表名")
    schema_name: str = Field(default="public", description="schema 名")
    record: Message | None = Field(default=None, description="变更后的行")
    old_record: dict[str, Any] = Field(
        default_factory=dict,
        description="变更前的行（UPDATE/DELETE 时可能只含主键）",
    )
    commit_timestamp: datetime | None = Field(default=None, description="提交时间")
