"""RestClient -- 托管平台数据 API（PostgREST）调用封装

行级 select / insert / update，过滤条件使用 PostgREST 语法（col=eq.v、or=(...)）。
请求携带 apikey 和当前会话的 Bearer token，由行级安全策略决定可见范围。
"""

import time
from typing import Any

import httpx
import structlog

from .exceptions import AuthError, BackendError, BackendUnreachableError, QueryError

log = structlog.get_logger()

# 健康检查超时（硬编码，应快速响应）
HEALTH_CHECK_TIMEOUT_S = 5

Filters = list[tuple[str, str]]


def eq(value: Any) -> str:
    """PostgREST 等值过滤表达式"""
    if isinstance(value, bool):
        return f"is.{str(value).lower()}"
    return f"eq.{value}"


def any_of(*conditions: str) -> tuple[str, str]:
    """PostgREST or 过滤，conditions 形如 "sender_id.eq.x" 或 "and(...)" """
    return ("or", f"({','.join(conditions)})")


class RestClient:
    """PostgREST 客户端

    共享一个 httpx.AsyncClient；access_token 在登录/登出/刷新时由 Session Gate 更新。
    """

    def __init__(
        self,
        rest_url: str,
        anon_key: str = "",
        timeout_s: int = 15,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """初始化数据 API 客户端

        Args:
            rest_url: 数据 API 基础 URL（{project}/rest/v1）
            anon_key: 平台匿名 API key
            timeout_s: 请求超时（秒）
            transport: 可选的 httpx transport（测试注入 MockTransport）
        """
        self._rest_url = rest_url.rstrip("/")
        self._anon_key = anon_key
        self._access_token: str | None = None
        self._client = httpx.AsyncClient(
            base_url=self._rest_url,
            timeout=timeout_s,
            transport=transport,
        )

    def set_access_token(self, token: str | None) -> None:
        """更新请求使用的用户 access_token，None 表示以匿名身份访问"""
        self._access_token = token

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        bearer = self._access_token or self._anon_key
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {bearer}",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Filters | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """查询行

        Args:
            table: 表名
            columns: select 列表，支持嵌入查询 alias:table!fk(cols)
            filters: [(列名, 表达式)]，如 [("read", "is.false")]
            order: 排序，如 "created_at.desc"
            limit: 最大行数
        """
        params: list[tuple[str, str]] = [("select", columns)]
        params.extend(filters or [])
        if order:
            params.append(("order", order))
        if limit is not None:
            params.append(("limit", str(limit)))
        return await self._request("GET", table, params=params)

    async def insert(
        self,
        table: str,
        row: dict[str, Any],
        columns: str = "*",
    ) -> list[dict[str, Any]]:
        """插入一行并返回服务端生成的完整行"""
        return await self._request(
            "POST",
            table,
            params=[("select", columns)],
            json=row,
            prefer="return=representation",
        )

    async def update(
        self,
        table: str,
        values: dict[str, Any],
        filters: Filters,
    ) -> list[dict[str, Any]]:
        """按过滤条件更新行，返回更新后的行

        filters 不允许为空，避免误更新整表。
        """
        if not filters:
            raise ValueError("update 必须带过滤条件")
        return await self._request(
            "PATCH",
            table,
            params=list(filters),
            json=values,
            prefer="return=representation",
        )

    async def _request(
        self,
        method: str,
        table: str,
        params: list[tuple[str, str]],
        json: dict[str, Any] | None = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        start_time = time.monotonic()
        try:
            response = await self._client.request(
                method,
                f"/{table}",
                params=params,
                json=json,
                headers=self._headers(prefer),
            )
        except httpx.TransportError as e:
            duration_ms = int((time.monotonic() - start_time) * 1000)
            log.error(
                "rest_call_failed",
                method=method,
                table=table,
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=duration_ms,
            )
            raise BackendUnreachableError(
                url=f"{self._rest_url}/{table}",
                original_error=e,
            ) from e

        duration_ms = int((time.monotonic() - start_time) * 1000)
        if response.status_code >= 400:
            raise self._error_from_response(response)

        log.debug(
            "rest_call_completed",
            method=method,
            table=table,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )

        if not response.content:
            return []
        data = response.json()
        if isinstance(data, dict):
            return [data]
        return data

    @staticmethod
    def _error_from_response(response: httpx.Response) -> BackendError:
        """将错误响应转换为异常"""
        message = response.text
        code = ""
        try:
            body = response.json()
            if isinstance(body, dict):
                message = body.get("message") or message
                code = body.get("code") or ""
        except ValueError:
            pass

        if response.status_code == 401:
            return AuthError(message=message, status_code=401)
        return QueryError(status_code=response.status_code, message=message, code=code)

    async def health_check(self) -> bool:
        """检查数据 API 可达性

        Returns:
            True 如果可达，False 如果不可达或异常

        注意: 此方法不抛出异常，所有异常内部捕获并返回 False。
        """
        try:
            response = await self._client.get(
                "/",
                headers=self._headers(),
                timeout=HEALTH_CHECK_TIMEOUT_S,
            )
            return response.status_code < 500
        except Exception as e:
            log.debug("health_check_failed", url=self._rest_url, error=str(e))
            return False

    async def aclose(self) -> None:
        """关闭底层 HTTP 连接池"""
        await self._client.aclose()
