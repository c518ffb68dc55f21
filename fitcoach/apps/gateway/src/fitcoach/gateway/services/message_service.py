"""MessageService -- 打开会话、发送消息、登记推送令牌

发送消息后写应用内通知并通过推送中继提醒对方；
通知与推送属于尽力而为，失败只记录日志，不影响发送结果。
"""

import structlog
from fitcoach.backend import BackendError, PushRelayClient
from fitcoach.core.config import MESSAGE_MAX_LENGTH
from fitcoach.core.models import Message
from fitcoach.core.store import MessageRepository

from .conversation_store import ConversationStore
from .session_gate import SessionGate

log = structlog.get_logger()

NOTIFICATION_TYPE_MESSAGE = "message"
NOTIFICATION_CONTENT_MESSAGE = "sent you a message"
PUSH_TITLE_MESSAGE = "New message"
PUSH_BODY_MAX_LENGTH = 100


class MessageService:
    """消息收发服务"""

    def __init__(
        self,
        gate: SessionGate,
        store: ConversationStore,
        repository: MessageRepository,
        push: PushRelayClient | None = None,
    ) -> None:
        self._gate = gate
        self._store = store
        self._repo = repository
        self._push = push

    async def open_thread(self, counterpart_id: str) -> list[Message]:
        """读取与 counterpart 的全部消息（时间正序），并把对方发来的未读消息标为已读

        Raises:
            NotAuthenticatedError: 未登录
            BackendError: 消息读取失败
        """
        identity = self._gate.require_identity()
        messages = await self._repo.fetch_thread(identity, counterpart_id)
        has_unread = any(
            m.sender_id == counterpart_id and m.is_unread_for(identity) for m in messages
        )
        conversation = self._store.get(counterpart_id)
        if has_unread or (conversation is not None and conversation.unread):
            await self._store.mark_read(counterpart_id)
        return messages

    async def send_message(self, recipient_id: str, content: str) -> Message:
        """发送消息

        Raises:
            NotAuthenticatedError: 未登录
            ValueError: 正文为空或过长，或发给自己
            BackendError: 消息写入失败
        """
        identity = self._gate.require_identity()
        text = content.strip()
        if not text:
            raise ValueError("消息内容不能为空")
        if len(text) > MESSAGE_MAX_LENGTH:
            raise ValueError(f"消息内容超过 {MESSAGE_MAX_LENGTH} 字符")
        if recipient_id == identity:
            raise ValueError("不能给自己发送消息")

        message = await self._repo.insert_message(identity, recipient_id, text)
        log.info(
            "message_sent",
            message_id=message.id,
            sender_id=identity,
            recipient_id=recipient_id,
        )

        await self._store.apply_incoming(message)
        await self._notify(message)
        return message

    async def register_push_token(self, token: str) -> None:
        """登记当前设备的推送令牌"""
        identity = self._gate.require_identity()
        token = token.strip()
        if not token:
            raise ValueError("推送令牌不能为空")
        await self._repo.save_push_token(identity, token)

    async def _notify(self, message: Message) -> None:
        """写应用内通知并推送给收件人"""
        try:
            await self._repo.upsert_notification(
                user_id=message.recipient_id,
                sender_id=message.sender_id,
                type=NOTIFICATION_TYPE_MESSAGE,
                content=NOTIFICATION_CONTENT_MESSAGE,
                related_id=message.sender_id,
            )
        except BackendError as e:
            log.warning(
                "message_notification_failed",
                message_id=message.id,
                error=str(e),
            )

        if self._push is None:
            return
        try:
            token = await self._repo.fetch_push_token(message.recipient_id)
            if token is None:
                log.debug("push_token_missing", recipient_id=message.recipient_id)
                return
            await self._push.send(
                token,
                title=PUSH_TITLE_MESSAGE,
                body=message.content[:PUSH_BODY_MAX_LENGTH],
                data={
                    "type": NOTIFICATION_TYPE_MESSAGE,
                    "senderId": message.sender_id,
                    "relatedId": message.sender_id,
                    "messageId": message.id,
                },
            )
        except BackendError as e:
            log.warning(
                "message_push_failed",
                message_id=message.id,
                recipient_id=message.recipient_id,
                error=str(e),
                error_type=type(e).__name__,
            )
