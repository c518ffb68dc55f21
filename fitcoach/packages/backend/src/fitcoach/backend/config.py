"""BackendConfig -- 托管平台与推送中继配置加载

从环境变量加载配置，不硬编码项目地址和密钥。
"""

import os

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()

DEFAULT_PUSH_RELAY_URL = "https://exp.host/--/api/v2/push/send"


class BackendConfig(BaseModel):
    """Backend 包配置 -- 从环境变量加载

    环境变量:
        FITCOACH_BACKEND_URL: 托管平台项目地址
        FITCOACH_BACKEND_ANON_KEY: 平台匿名（公开）API key
        FITCOACH_PUSH_RELAY_URL: 推送中继地址
        FITCOACH_BACKEND_TIMEOUT_S: HTTP 调用超时（秒，默认 15）
    """

    base_url: str = Field(
        default="http://localhost:54321",
        description="托管平台项目基础 URL",
    )
    anon_key: SecretStr = Field(
        default=SecretStr(""),
        description="平台匿名 API key（随客户端分发，不是 service key）",
    )
    push_relay_url: str = Field(
        default=DEFAULT_PUSH_RELAY_URL,
        description="推送中继 HTTP 接口",
    )
    timeout_s: int = Field(
        default=15,
        ge=1,
        description="HTTP 调用超时（秒）",
    )

    @property
    def rest_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/rest/v1"

    @property
    def auth_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/auth/v1"

    @property
    def realtime_url(self) -> str:
        """websocket 地址，http(s) 替换为 ws(s)"""
        base = self.base_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://") :]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://") :]
        return f"{base}/realtime/v1/websocket"


def load_backend_config() -> BackendConfig:
    """从环境变量加载 Backend 配置

    环境变量映射:
        FITCOACH_BACKEND_URL -> base_url (默认 "http://localhost:54321")
        FITCOACH_BACKEND_ANON_KEY -> anon_key (默认 "")
        FITCOACH_PUSH_RELAY_URL -> push_relay_url
        FITCOACH_BACKEND_TIMEOUT_S -> timeout_s (默认 15)

    Returns:
        BackendConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("FITCOACH_BACKEND_URL"):
        kwargs["base_url"] = val

    if val := os.environ.get("FITCOACH_BACKEND_ANON_KEY"):
        kwargs["anon_key"] = SecretStr(val)

    if val := os.environ.get("FITCOACH_PUSH_RELAY_URL"):
        kwargs["push_relay_url"] = val

    if val := os.environ.get("FITCOACH_BACKEND_TIMEOUT_S"):
        try:
            kwargs["timeout_s"] = int(val)
        except ValueError:
            log.warning(
                "invalid_timeout_config",
                env_var="FITCOACH_BACKEND_TIMEOUT_S",
                value=val,
                fallback=15,
            )

    return BackendConfig(**kwargs)
