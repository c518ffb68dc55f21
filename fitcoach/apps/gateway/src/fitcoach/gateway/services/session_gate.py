"""SessionGate -- 当前登录身份的唯一持有者

状态: LOADING -> ANONYMOUS / AUTHENTICATED。
非 AUTHENTICATED 状态下，下游组件除会话恢复外不得发起任何网络调用。
身份变化（登录、登出、换号）时按注册顺序通知监听者，generation 单调递增；
同一用户的 token 刷新不算身份变化。
"""

import asyncio
from collections.abc import Awaitable, Callable

import structlog
from fitcoach.backend import AuthClient, AuthError, BackendError
from fitcoach.core.config import SESSION_REFRESH_MARGIN
from fitcoach.core.models import AuthEvent, Session, SessionStatus
from fitcoach.core.store import SessionStore

log = structlog.get_logger()

IdentityListener = Callable[[str | None, str | None], Awaitable[None]]
TokenListener = Callable[[str | None], None]
RefreshListener = Callable[[str], Awaitable[None]]


class NotAuthenticatedError(Exception):
    """需要已认证身份的操作在未登录状态下被调用"""

    def __init__(self, status: SessionStatus) -> None:
        super().__init__(f"当前会话状态为 {status}，需要先登录")
        self.status = status


class SessionGate:
    """会话闸门"""

    def __init__(
        self,
        auth: AuthClient,
        session_store: SessionStore,
        refresh_margin_s: int = SESSION_REFRESH_MARGIN,
    ) -> None:
        self._auth = auth
        self._session_store = session_store
        self._refresh_margin_s = refresh_margin_s

        self._status = SessionStatus.LOADING
        self._session: Session | None = None
        self._generation = 0
        self._identity_listeners: list[IdentityListener] = []
        self._token_listeners: list[TokenListener] = []
        self._refresh_listeners: list[RefreshListener] = []
        self._refresh_lock = asyncio.Lock()

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def identity(self) -> str | None:
        """当前用户 ID；LOADING 与 ANONYMOUS 状态下为 None"""
        if self._status is not SessionStatus.AUTHENTICATED or self._session is None:
            return None
        return self._session.user_id

    @property
    def generation(self) -> int:
        """身份纪元，每次身份变化 +1"""
        return self._generation

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None

    @property
    def access_token(self) -> str | None:
        if self._session is None:
            return None
        return self._session.access_token.get_secret_value()

    def add_identity_listener(self, listener: IdentityListener) -> None:
        """注册身份变化监听者，回调参数为 (旧身份, 新身份)"""
        self._identity_listeners.append(listener)

    def add_token_listener(self, listener: TokenListener) -> None:
        """注册 access_token 变化监听者（包括刷新）"""
        self._token_listeners.append(listener)

    def add_refresh_listener(self, listener: RefreshListener) -> None:
        """注册同一身份 token 刷新后的异步监听者（如实时通道换新 token）"""
        self._refresh_listeners.append(listener)

    def require_identity(self) -> str:
        """返回当前身份，未认证时抛出 NotAuthenticatedError"""
        identity = self.identity
        if identity is None:
            raise NotAuthenticatedError(self._status)
        return identity

    async def restore(self) -> None:
        """从本地持久化恢复会话

        会话即将过期时先刷新；refresh_token 失效则清除本地会话。
        平台不可达时保留本地会话，后续 refresh_if_needed() 再尝试。
        """
        self._status = SessionStatus.LOADING
        try:
            stored = await self._session_store.load_session()
        except Exception as e:
            log.error("session_restore_failed", error=str(e))
            stored = None

        if stored is None:
            await self._apply(None, AuthEvent.INITIAL_SESSION)
            return

        if stored.expires_within(self._refresh_margin_s):
            try:
                stored = await self._auth.refresh_session(
                    stored.refresh_token.get_secret_value()
                )
            except AuthError as e:
                log.warning("session_restore_refresh_rejected", error=str(e))
                await self._apply(None, AuthEvent.INITIAL_SESSION)
                return
            except BackendError as e:
                log.warning("session_restore_refresh_unavailable", error=str(e))

        await self._apply(stored, AuthEvent.INITIAL_SESSION)

    async def sign_in(self, email: str, password: str) -> Session:
        """邮箱密码登录

        Raises:
            AuthError: 凭据错误
            BackendUnreachableError: 认证服务不可达
        """
        session = await self._auth.sign_in_with_password(email, password)
        await self._apply(session, AuthEvent.SIGNED_IN)
        return session

    async def sign_up(
        self,
        email: str,
        password: str,
        username: str | None = None,
    ) -> Session | None:
        """注册；需要邮件确认时返回 None 且身份不变"""
        session = await self._auth.sign_up(email, password, username)
        if session is not None:
            await self._apply(session, AuthEvent.SIGNED_IN)
        return session

    async def sign_out(self) -> None:
        """登出：撤销服务端会话（失败仅记录），本地一定清除"""
        token = self.access_token
        if token:
            try:
                await self._auth.sign_out(token)
            except BackendError as e:
                log.warning("sign_out_remote_failed", error=str(e))
        await self._apply(None, AuthEvent.SIGNED_OUT)

    async def refresh_if_needed(self) -> bool:
        """access_token 即将过期时刷新

        Returns:
            True 如果执行了刷新
        """
        async with self._refresh_lock:
            session = self._session
            if session is None or self._status is not SessionStatus.AUTHENTICATED:
                return False
            if not session.expires_within(self._refresh_margin_s):
                return False
            try:
                refreshed = await self._auth.refresh_session(
                    session.refresh_token.get_secret_value()
                )
            except AuthError as e:
                log.warning("session_refresh_rejected", error=str(e))
                await self._apply(None, AuthEvent.SIGNED_OUT)
                return False
            except BackendError as e:
                log.warning("session_refresh_unavailable", error=str(e))
                return False
            await self._apply(refreshed, AuthEvent.TOKEN_REFRESHED)
            return True

    async def _apply(self, session: Session | None, event: AuthEvent) -> None:
        """切换会话：持久化 -> 通知 token 监听者 -> 身份变化时通知身份监听者"""
        old_identity = self.identity

        self._session = session
        self._status = (
            SessionStatus.AUTHENTICATED if session is not None else SessionStatus.ANONYMOUS
        )

        try:
            if session is not None:
                await self._session_store.save_session(session)
            else:
                await self._session_store.clear_session()
        except Exception as e:
            log.error("session_persist_failed", error=str(e), auth_event=event)

        for token_listener in self._token_listeners:
            token_listener(self.access_token)

        new_identity = self.identity
        log.info(
            "auth_state_changed",
            auth_event=event,
            status=self._status,
            user_id=new_identity,
        )

        if new_identity == old_identity:
            token = self.access_token
            if event is AuthEvent.TOKEN_REFRESHED and token:
                for refresh_listener in self._refresh_listeners:
                    try:
                        await refresh_listener(token)
                    except Exception as e:
                        log.error(
                            "refresh_listener_failed",
                            error=str(e),
                            error_type=type(e).__name__,
                        )
            return

        self._generation += 1
        for listener in self._identity_listeners:
            try:
                await listener(old_identity, new_identity)
            except Exception as e:
                log.error(
                    "identity_listener_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
