"""其余接口成功响应 `data` 字段结构定义。"""

from typing import Any

from pydantic import Field

from iam_api.schemas.common import BaseSchema


class HealthStatusData(BaseSchema):
    """健康检查返回结构。"""

    status: str = Field(description="健康状态值，常见为 ok 或 ready。")


class AbilityData(BaseSchema):
    """当前身份在当前租户范围内的有效能力。"""

    subject_id: str = Field(description="令牌中的用户 ID。")
    tenant_id: str | None = Field(default=None, description="解析时使用的租户范围。")
    role_ids: list[str] = Field(default_factory=list, description="令牌内嵌角色。")
    rules: list[dict[str, Any]] = Field(default_factory=list, description="扣除拒绝后的允许规则。")
    denied: list[dict[str, Any]] = Field(default_factory=list, description="显式拒绝规则。")
    policy_denials: list[dict[str, Any]] = Field(default_factory=list, description="命中当前身份的 deny 资源策略。")
