"""AuthClient -- 托管平台认证服务调用封装

密码登录、注册、refresh_token 换新、登出，返回 core 的 Session 模型。
"""

from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import structlog
from fitcoach.core.models.session import Session
from pydantic import SecretStr

from .exceptions import AuthError, BackendUnreachableError

log = structlog.get_logger()

# 服务端未返回 expires_in 时使用的默认有效期（秒）
DEFAULT_TOKEN_TTL_S = 3600


class AuthClient:
    """认证服务客户端"""

    def __init__(
        self,
        auth_url: str,
        anon_key: str = "",
        timeout_s: int = 15,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """初始化认证客户端

        Args:
            auth_url: 认证服务基础 URL（{project}/auth/v1）
            anon_key: 平台匿名 API key
            timeout_s: 请求超时（秒）
            transport: 可选的 httpx transport（测试注入 MockTransport）
        """
        self._auth_url = auth_url.rstrip("/")
        self._anon_key = anon_key
        self._client = httpx.AsyncClient(
            base_url=self._auth_url,
            timeout=timeout_s,
            transport=transport,
        )

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        """邮箱密码登录

        Raises:
            AuthError: 凭据错误
            BackendUnreachableError: 认证服务不可达
        """
        body = await self._post(
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = self._session_from_body(body)
        log.info("auth_signed_in", user_id=session.user_id)
        return session

    async def sign_up(
        self,
        email: str,
        password: str,
        username: str | None = None,
    ) -> Session | None:
        """注册新用户

        Returns:
            项目开启自动确认时返回 Session；需要邮件确认时返回 None
        """
        payload: dict[str, Any] = {"email": email, "password": password}
        if username:
            payload["data"] = {"username": username}
        body = await self._post("/signup", json=payload)
        if not body.get("access_token"):
            log.info("auth_signup_pending_confirmation", email=email)
            return None
        return self._session_from_body(body)

    async def refresh_session(self, refresh_token: str) -> Session:
        """使用 refresh_token 换取新会话

        Raises:
            AuthError: refresh_token 已失效，需要重新登录
        """
        body = await self._post(
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        session = self._session_from_body(body)
        log.info("auth_token_refreshed", user_id=session.user_id)
        return session

    async def sign_out(self, access_token: str) -> None:
        """撤销服务端会话

        令牌已失效时服务端返回 401，视为已登出。
        """
        try:
            await self._post("/logout", json=None, access_token=access_token)
        except AuthError as e:
            log.debug("auth_sign_out_token_invalid", error=str(e))

    async def _post(
        self,
        path: str,
        json: dict[str, Any] | None,
        params: dict[str, str] | None = None,
        access_token: str | None = None,
    ) -> dict[str, Any]:
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {access_token or self._anon_key}",
        }
        try:
            response = await self._client.post(
                path, params=params, json=json, headers=headers
            )
        except httpx.TransportError as e:
            log.error(
                "auth_call_failed",
                path=path,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise BackendUnreachableError(
                url=f"{self._auth_url}{path}",
                original_error=e,
            ) from e

        if response.status_code >= 400:
            raise AuthError(
                message=self._error_message(response),
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict):
            return (
                body.get("error_description")
                or body.get("msg")
                or body.get("message")
                or body.get("error")
                or response.text
            )
        return response.text

    @staticmethod
    def _session_from_body(body: dict[str, Any]) -> Session:
        """将认证服务响应转换为 Session"""
        user = body.get("user") or {}
        if not body.get("access_token") or not user.get("id"):
            raise AuthError("认证响应缺少 access_token 或 user")

        if expires_at := body.get("expires_at"):
            expires = datetime.fromtimestamp(int(expires_at), tz=UTC)
        else:
            ttl = int(body.get("expires_in") or DEFAULT_TOKEN_TTL_S)
            expires = datetime.now(UTC) + timedelta(seconds=ttl)

        return Session(
            user_id=user["id"],
            email=user.get("email") or "",
            access_token=SecretStr(body["access_token"]),
            refresh_token=SecretStr(body.get("refresh_token") or ""),
            expires_at=expires,
        )

    async def aclose(self) -> None:
        """关闭底层 HTTP 连接池"""
        await self._client.aclose()
