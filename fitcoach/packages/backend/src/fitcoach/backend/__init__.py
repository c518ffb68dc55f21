"""FitCoach Backend -- 托管平台与推送中继访问层

packages/backend 的公开接口导出。
"""

# 客户端
from .auth import AuthClient

# 配置
from .config import BackendConfig, load_backend_config

# 异常
from .exceptions import (
    AuthError,
    BackendError,
    BackendUnreachableError,
    PushDeliveryError,
    QueryError,
    RealtimeError,
)
from .models import PostgresChangesBinding, PushMessage, PushTicket
from .push import PushRelayClient
from .realtime import RealtimeClient, parse_postgres_change
from .repository import BackendMessageRepository
from .rest import RestClient

__all__ = [
    "RestClient",
    "AuthClient",
    "RealtimeClient",
    "PushRelayClient",
    "BackendMessageRepository",
    "parse_postgres_change",
    "PostgresChangesBinding",
    "PushMessage",
    "PushTicket",
    "BackendConfig",
    "load_backend_config",
    "BackendError",
    "BackendUnreachableError",
    "QueryError",
    "AuthError",
    "RealtimeError",
    "PushDeliveryError",
]
