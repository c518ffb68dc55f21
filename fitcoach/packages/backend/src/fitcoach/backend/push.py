"""PushRelayClient -- 第三方推送中继调用封装

POST {to, title, body, data, sound, badge}，只关心中继是否接收。
"""

from typing import Any

import httpx
import structlog

from .exceptions import BackendUnreachableError, PushDeliveryError
from .models import PushMessage, PushTicket

log = structlog.get_logger()


class PushRelayClient:
    """推送中继客户端"""

    def __init__(
        self,
        relay_url: str,
        timeout_s: int = 15,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._relay_url = relay_url
        self._client = httpx.AsyncClient(timeout=timeout_s, transport=transport)

    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> PushTicket:
        """发送一条推送

        Args:
            token: 设备推送令牌
            title: 通知标题
            body: 通知正文
            data: 应用自定义数据

        Returns:
            PushTicket 中继回执

        Raises:
            PushDeliveryError: 中继拒绝或返回错误回执
            BackendUnreachableError: 中继不可达
        """
        message = PushMessage(to=token, title=title, body=body, data=data or {})
        try:
            response = await self._client.post(
                self._relay_url,
                json=message.model_dump(),
                headers={"Accept": "application/json"},
            )
        except httpx.TransportError as e:
            raise BackendUnreachableError(url=self._relay_url, original_error=e) from e

        if response.status_code >= 400:
            raise PushDeliveryError(
                f"推送中继返回 {response.status_code}: {response.text}"
            )

        ticket = self._parse_ticket(response)
        if ticket.status != "ok":
            raise PushDeliveryError(f"推送被拒绝: {ticket.message}")

        log.info("push_sent", ticket_id=ticket.id)
        return ticket

    @staticmethod
    def _parse_ticket(response: httpx.Response) -> PushTicket:
        """解析回执，中继返回 {"data": {...}} 或 {"data": [{...}]}"""
        try:
            body = response.json()
        except ValueError:
            return PushTicket()
        data = body.get("data") if isinstance(body, dict) else None
        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, dict):
            return PushTicket()
        return PushTicket(
            status=data.get("status", "ok"),
            id=data.get("id", ""),
            message=data.get("message", ""),
        )

    async def aclose(self) -> None:
        """关闭底层 HTTP 连接池"""
        await self._client.aclose()
