"""枚举定义

包含会话闸门状态、实时通道状态机、数据变更类型、应用生命周期状态，
以及 VALID_TRANSITIONS 合法流转映射。
"""

from enum import StrEnum


class SessionStatus(StrEnum):
    """Session Gate 状态 -- LOADING 与 ANONYMOUS 是两个不同状态"""

    LOADING = "LOADING"
    ANONYMOUS = "ANONYMOUS"
    AUTHENTICATED = "AUTHENTICATED"


class AuthEvent(StrEnum):
    """认证事件类型，与托管平台 auth 客户端的事件名一致"""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


class ChannelState(StrEnum):
    """Live Update Channel 状态机"""

    UNSUBSCRIBED = "UNSUBSCRIBED"
    SUBSCRIBING = "SUBSCRIBING"
    SUBSCRIBED = "SUBSCRIBED"
    FAILED = "FAILED"
    # 等待退避计时器到期后重新订阅
    BACKOFF = "BACKOFF"


# 合法状态流转；任何状态都可以 teardown 回到 UNSUBSCRIBED
VALID_TRANSITIONS: dict[ChannelState, set[ChannelState]] = {
    ChannelState.UNSUBSCRIBED: {ChannelState.SUBSCRIBING},
    ChannelState.SUBSCRIBING: {
        ChannelState.SUBSCRIBED,
        ChannelState.FAILED,
        ChannelState.UNSUBSCRIBED,
    },
    ChannelState.SUBSCRIBED: {ChannelState.FAILED, ChannelState.UNSUBSCRIBED},
    ChannelState.FAILED: {ChannelState.BACKOFF, ChannelState.UNSUBSCRIBED},
    ChannelState.BACKOFF: {ChannelState.SUBSCRIBING, ChannelState.UNSUBSCRIBED},
}


class ChangeType(StrEnum):
    """postgres_changes 事件类型"""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class AppState(StrEnum):
    """移动端应用生命周期状态"""

    ACTIVE = "active"
    INACTIVE = "inactive"
    BACKGROUND = "background"


class ResyncReason(StrEnum):
    """触发全量重同步的原因"""

    FOREGROUND = "foreground"
    SCREEN_FOCUS = "screen_focus"
    PERIODIC = "periodic"


def validate_transition(from_state: ChannelState, to_state: ChannelState) -> bool:
    """验证通道状态流转是否合法

    Args:
        from_state: 当前状态
        to_state: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_state, set())
    return to_state in allowed
