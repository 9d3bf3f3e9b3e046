"""资源策略请求/响应结构。"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from iam_api.schemas.common import BaseSchema


class PolicyCreateRequest(BaseSchema):
    """创建资源策略请求。name、resource、effect 必填，缺失时返回 400。"""

    name: str | None = Field(default=None, description="策略名称。", examples=["Freeze lessons for t2"])
    resource: str | None = Field(default=None, description="作用的资源类型。", examples=["Lesson"])
    effect: str | None = Field(default=None, description="allow 或 deny，目前只有 deny 参与判定。", examples=["deny"])
    conditions: dict[str, Any] | None = Field(
        default=None,
        description="上下文条件，仅支持 tenantId / userId，可引用 ${ctx.userId}、${ctx.tenantId}。",
        examples=[{"tenantId": "${ctx.tenantId}"}],
    )
    priority: int | None = Field(default=None, description="优先级，越大越先评估。")
    tenant_id: str | None = Field(default=None, description="租户范围；缺省取调用方租户。")
    is_active: bool | None = Field(default=None, description="是否启用，缺省启用。")


class PolicyUpdateRequest(PolicyCreateRequest):
    """部分更新资源策略请求，仅提交的字段会被修改。"""


class PolicyData(BaseSchema):
    """资源策略详情。"""

    id: UUID = Field(description="策略 ID。")
    name: str = Field(description="策略名称。")
    resource: str = Field(description="资源类型。")
    effect: str = Field(description="allow 或 deny。")
    conditions: dict[str, Any] = Field(default_factory=dict, description="上下文条件。")
    priority: int = Field(description="优先级。")
    tenant_id: str | None = Field(default=None, description="租户范围，空表示全局。")
    is_active: bool = Field(description="是否启用。")
    created_at: datetime | None = Field(default=None, description="创建时间。")
    updated_at: datetime | None = Field(default=None, description="更新时间。")
