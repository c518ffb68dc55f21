"""数据模型 -- 推送中继与实时订阅的请求/响应"""

from typing import Any

from pydantic import BaseModel, Field


class PushMessage(BaseModel):
    """推送中继请求体"""

    to: str = Field(description="设备推送令牌")
    title: str = Field(description="通知标题")
    body: str = Field(description="通知正文")
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="应用自定义数据，客户端点击通知时使用",
    )
    sound: str = Field(default="default", description="提示音")
    badge: int = Field(default=1, ge=0, description="角标数")


class PushTicket(BaseModel):
    """推送中继回执

    status 为 "ok" 表示中继已接收，不代表设备已送达。
    """

    status: str = Field(default="ok", description="ok / error")
    id: str = Field(default="", description="回执 ID")
    message: str = Field(default="", description="错误说明")


class PostgresChangesBinding(BaseModel):
    """postgres_changes 订阅条件，在服务端按表和列谓词过滤"""

    event: str = Field(default="*", description="INSERT / UPDATE / DELETE / *")
    schema_name: str = Field(default="public", alias="schema", description="schema")
    table: str = Field(description="表名")
    filter: str | None = Field(default=None, description="列谓词，如 recipient_id=eq.<id>")

    model_config = {"populate_by_name": True}

    def to_join_config(self) -> dict[str, Any]:
        """转换为 phx_join payload 中的条目"""
        config: dict[str, Any] = {
            "event": self.event,
            "schema": self.schema_name,
            "table": self.table,
        }
        if self.filter:
            config["filter"] = self.filter
        return config
