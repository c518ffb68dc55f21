"""Store Protocol 接口定义

定义 SessionStore 与 MessageRepository 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
MessageRepository 的实现位于 fitcoach.backend（托管平台数据 API），
测试中可用内存实现替换。
"""

from typing import Protocol

from ..models.message import Message, MessageRow, ProfileSummary
from ..models.session import Session


class SessionStore(Protocol):
    """本地会话持久化接口"""

    async def save_session(self, session: Session) -> None:
        """保存（覆盖）当前会话"""
        ...

    async def load_session(self) -> Session | None:
        """读取已保存的会话"""
        ...

    async def clear_session(self) -> None:
        """清除已保存的会话"""
        ...


class MessageRepository(Protocol):
    """messages / profiles / notifications / user_push_tokens 表访问接口"""

    async def fetch_conversation_rows(self, identity: str) -> list[MessageRow]:
        """查询 identity 作为发送方或接收方的所有消息，按 created_at 倒序"""
        ...

    async def fetch_thread(self, identity: str, counterpart_id: str) -> list[Message]:
        """查询两人之间的所有消息，按 created_at 正序"""
        ...

    async def fetch_profile(self, user_id: str) -> ProfileSummary | None:
        """查询用户展示资料"""
        ...

    async def mark_read(self, sender_id: str, recipient_id: str) -> int:
        """将 sender 发给 recipient 的未读消息置为已读，返回更新行数"""
        ...

    async def insert_message(
        self,
        sender_id: str,
        recipient_id: str,
        content: str,
    ) -> Message:
        """插入一条消息并返回服务端生成的完整行"""
        ...

    async def upsert_notification(
        self,
        user_id: str,
        sender_id: str,
        type: str,
        content: str,
        related_id: str | None = None,
    ) -> None:
        """写入应用内通知，同一 (user, sender, type, related) 已存在时更新"""
        ...

    async def fetch_push_token(self, user_id: str) -> str | None:
        """查询用户的设备推送令牌"""
        ...

    async def save_push_token(self, user_id: str, token: str) -> None:
        """保存（覆盖）用户的设备推送令牌"""
        ...
