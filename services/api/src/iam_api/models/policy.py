"""资源策略模型。"""

from typing import Any

from sqlalchemy import JSON, Boolean, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from iam_api.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

POLICY_EFFECT_ALLOW = "allow"
POLICY_EFFECT_DENY = "deny"


class ResourcePolicy(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """叠加在角色权限之上的资源策略。

    说明：
    1. 目前只有 deny 策略参与判定，allow 策略仅存档。
    2. conditions 只支持 tenantId / userId 两个上下文键，值可以引用
       `${ctx.userId}`、`${ctx.tenantId}`、`${publicTenantId}`。
    3. tenant_id 为空表示全局策略。
    """

    __tablename__ = "resource_policies"

    name: Mapped[str] = mapped_column(String(128), nullable=False)
    # 作用的资源类型，如 Lesson；`all` 表示任意资源。
    resource: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    effect: Mapped[str] = mapped_column(String(16), nullable=False, default=POLICY_EFFECT_ALLOW)
    conditions: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict
    )
    # 数值越大越先评估。
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tenant_id: Mapped[str | None] = mapped_column(String(64), index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
