"""角色、权限及其分配关系模型。"""

from uuid import UUID

from sqlalchemy import Boolean, Index, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from iam_api.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# 租户维度为空表示全局；唯一索引按 coalesce 归一，保证全局记录同样只有一行。
_TENANT_SCOPE_KEY = text("coalesce(tenant_id, '')")


class Permission(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """权限点（资源 + 动作）。

    说明：
    1. slug 全局唯一，如 `lesson:read`。
    2. is_system 权限由管理接口禁止删除，数据库层不做约束。
    """

    __tablename__ = "permissions"

    name: Mapped[str] = mapped_column(String(128), nullable=False)
    slug: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    # 资源类型，如 Lesson / User；`all` 或 `*` 表示任意资源。
    resource: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # 动作，如 read / update；`manage` 或 `*` 表示任意动作。
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class Role(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """角色定义。"""

    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(128), nullable=False)
    # 角色短标识，令牌中的 role 声明按该字段匹配。
    slug: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    # 适用范围：system 为平台级角色，tenant 为租户管理员可维护的角色，空表示未限定。
    tenant_scope: Mapped[str | None] = mapped_column(String(32))
    description: Mapped[str | None] = mapped_column(Text)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class RolePermission(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """角色-权限关联。"""

    __tablename__ = "role_permissions"
    __table_args__ = (UniqueConstraint("role_id", "permission_id", name="uk_role_permission"),)

    role_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    permission_id: Mapped[UUID] = mapped_column(nullable=False, index=True)


class UserRole(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """用户角色分配。

    同一用户 + 同一角色 + 同一租户范围 唯一；tenant_id 为空表示全局分配。
    """

    __tablename__ = "user_roles"
    __table_args__ = (
        Index("uk_user_role_scope", "user_id", "role_id", _TENANT_SCOPE_KEY, unique=True),
    )

    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    role_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    tenant_id: Mapped[str | None] = mapped_column(String(64), index=True)


class UserPermission(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """用户级权限覆盖（显式授予或显式拒绝）。

    同一用户 + 同一权限 + 同一租户范围 唯一；拒绝优先于任何授予。
    """

    __tablename__ = "user_permissions"
    __table_args__ = (
        Index("uk_user_permission_scope", "user_id", "permission_id", _TENANT_SCOPE_KEY, unique=True),
    )

    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    permission_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    tenant_id: Mapped[str | None] = mapped_column(String(64), index=True)
    granted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
