"""BackendMessageRepository -- MessageRepository 的数据 API 实现

所有查询通过 RestClient 发往托管平台，行级安全策略保证只能看到与当前用户相关的行。
"""

from datetime import UTC, datetime

import structlog
from fitcoach.core.models.message import Message, MessageRow, ProfileSummary
from pydantic import ValidationError

from .rest import RestClient, any_of, eq

log = structlog.get_logger()

_PROFILE_COLUMNS = "id,username,avatar_url"

# 全量拉取：消息 + 嵌入的发送者/接收者资料
_CONVERSATION_COLUMNS = (
    "id,content,created_at,read,sender_id,recipient_id,"
    f"sender:profiles!sender_id({_PROFILE_COLUMNS}),"
    f"recipient:profiles!recipient_id({_PROFILE_COLUMNS})"
)


class BackendMessageRepository:
    """基于 PostgREST 的 MessageRepository"""

    def __init__(self, rest: RestClient) -> None:
        self._rest = rest

    async def fetch_conversation_rows(self, identity: str) -> list[MessageRow]:
        """查询 identity 作为发送方或接收方的所有消息，按 created_at 倒序

        无法解析的行被跳过并记录日志，不影响其余行。
        """
        raw_rows = await self._rest.select(
            "messages",
            columns=_CONVERSATION_COLUMNS,
            filters=[any_of(f"sender_id.eq.{identity}", f"recipient_id.eq.{identity}")],
            order="created_at.desc",
        )
        rows: list[MessageRow] = []
        for raw in raw_rows:
            try:
                rows.append(MessageRow.model_validate(raw))
            except ValidationError as e:
                log.warning(
                    "message_row_invalid",
                    message_id=raw.get("id") if isinstance(raw, dict) else None,
                    error=str(e),
                )
        return rows

    async def fetch_thread(self, identity: str, counterpart_id: str) -> list[Message]:
        """查询两人之间的所有消息，按 created_at 正序"""
        raw_rows = await self._rest.select(
            "messages",
            filters=[
                any_of(
                    f"and(sender_id.eq.{identity},recipient_id.eq.{counterpart_id})",
                    f"and(sender_id.eq.{counterpart_id},recipient_id.eq.{identity})",
                )
            ],
            order="created_at.asc",
        )
        messages: list[Message] = []
        for raw in raw_rows:
            try:
                messages.append(Message.model_validate(raw))
            except ValidationError as e:
                log.warning("message_row_invalid", error=str(e))
        return messages

    async def fetch_profile(self, user_id: str) -> ProfileSummary | None:
        """查询用户展示资料；不存在或无法解析时返回 None"""
        rows = await self._rest.select(
            "profiles",
            columns=_PROFILE_COLUMNS,
            filters=[("id", eq(user_id))],
            limit=1,
        )
        if not rows:
            return None
        try:
            return ProfileSummary.model_validate(rows[0])
        except ValidationError as e:
            log.warning("profile_row_invalid", user_id=user_id, error=str(e))
            return None

    async def mark_read(self, sender_id: str, recipient_id: str) -> int:
        """将 sender 发给 recipient 的未读消息置为已读，返回更新行数"""
        rows = await self._rest.update(
            "messages",
            {"read": True},
            filters=[
                ("sender_id", eq(sender_id)),
                ("recipient_id", eq(recipient_id)),
                ("read", eq(False)),
            ],
        )
        return len(rows)

    async def insert_message(
        self,
        sender_id: str,
        recipient_id: str,
        content: str,
    ) -> Message:
        """插入一条消息并返回服务端生成的完整行"""
        rows = await self._rest.insert(
            "messages",
            {
                "sender_id": sender_id,
                "recipient_id": recipient_id,
                "content": content,
            },
        )
        return Message.model_validate(rows[0])

    async def upsert_notification(
        self,
        user_id: str,
        sender_id: str,
        type: str,
        content: str,
        related_id: str | None = None,
    ) -> None:
        """写入应用内通知

        同一 (user_id, sender_id, type, related_id) 已存在时只刷新内容并重新置为未读，
        避免同一个人连续发消息时刷出多条通知。
        """
        filters = [
            ("user_id", eq(user_id)),
            ("sender_id", eq(sender_id)),
            ("type", eq(type)),
            ("related_id", eq(related_id) if related_id else "is.null"),
        ]
        existing = await self._rest.select(
            "notifications", columns="id", filters=filters, limit=1
        )
        if existing:
            await self._rest.update(
                "notifications",
                {
                    "content": content,
                    "read": False,
                    "updated_at": datetime.now(UTC).isoformat(),
                },
                filters=[("id", eq(existing[0]["id"]))],
            )
            return

        await self._rest.insert(
            "notifications",
            {
                "user_id": user_id,
                "sender_id": sender_id,
                "type": type,
                "content": content,
                "related_id": related_id,
                "read": False,
            },
        )

    async def fetch_push_token(self, user_id: str) -> str | None:
        """查询用户的设备推送令牌"""
        rows = await self._rest.select(
            "user_push_tokens",
            columns="token",
            filters=[("user_id", eq(user_id))],
            limit=1,
        )
        if not rows:
            return None
        return rows[0].get("token") or None

    async def save_push_token(self, user_id: str, token: str) -> None:
        """保存（覆盖）用户的设备推送令牌"""
        now = datetime.now(UTC).isoformat()
        existing = await self._rest.select(
            "user_push_tokens",
            columns="user_id",
            filters=[("user_id", eq(user_id))],
            limit=1,
        )
        if existing:
            await self._rest.update(
                "user_push_tokens",
                {"token": token, "updated_at": now},
                filters=[("user_id", eq(user_id))],
            )
        else:
            await self._rest.insert(
                "user_push_tokens",
                {
                    "user_id": user_id,
                    "token": token,
                    "created_at": now,
                    "updated_at": now,
                },
            )
        log.info("push_token_saved", user_id=user_id)
