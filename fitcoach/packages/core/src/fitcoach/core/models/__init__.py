"""FitCoach Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .conversation import Conversation, ConversationSnapshot
from .enums import (
    VALID_TRANSITIONS,
    AppState,
    AuthEvent,
    ChangeType,
    ChannelState,
    ResyncReason,
    SessionStatus,
    validate_transition,
)
from .message import Message, MessageChange, MessageRow, ProfileSummary
from .session import Session

__all__ = [
    # 枚举
    "SessionStatus",
    "AuthEvent",
    "ChannelState",
    "ChangeType",
    "AppState",
    "ResyncReason",
    # 状态机
    "VALID_TRANSITIONS",
    "validate_transition",
    # Message
    "Message",
    "MessageRow",
    "MessageChange",
    "ProfileSummary",
    # Conversation
    "Conversation",
    "ConversationSnapshot",
    # Session
    "Session",
]
