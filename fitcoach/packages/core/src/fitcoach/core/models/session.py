"""Session Domain Model -- 当前登录身份

access_token / refresh_token 由托管平台 auth 服务签发，本地持久化后可在重启时恢复。
"""

from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, Field, SecretStr


class Session(BaseModel):
    """已认证会话"""

    user_id: str = Field(description="用户 ID")
    email: str = Field(default="", description="登录邮箱")
    access_token: SecretStr = Field(description="访问令牌")
    refresh_token: SecretStr = Field(description="刷新令牌")
    expires_at: datetime = Field(description="access_token 过期时间")

    def expires_within(self, seconds: int, now: datetime | None = None) -> bool:
        """access_token 是否会在 seconds 秒内过期"""
        now = now or datetime.now(UTC)
        return self.expires_at - now <= timedelta(seconds=seconds)
