"""权限与角色管理相关请求/响应结构。"""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from iam_api.schemas.common import BaseSchema


class PermissionCreateRequest(BaseSchema):
    """创建权限请求。

    必填字段在服务层统一校验，缺失时返回 400 并列出缺少的字段。
    """

    name: str | None = Field(default=None, description="权限名称。", examples=["Read lessons"])
    slug: str | None = Field(default=None, description="全局唯一短标识。", examples=["lesson:read"])
    resource: str | None = Field(default=None, description="资源类型。", examples=["Lesson"])
    action: str | None = Field(default=None, description="动作。", examples=["read"])
    description: str | None = Field(default=None, description="权限说明。")
    is_system: bool | None = Field(default=None, description="是否系统内置（内置权限禁止删除）。")


class PermissionUpdateRequest(BaseSchema):
    """部分更新权限请求，仅提交的字段会被修改。"""

    name: str | None = Field(default=None, description="权限名称。")
    slug: str | None = Field(default=None, description="全局唯一短标识。")
    resource: str | None = Field(default=None, description="资源类型。")
    action: str | None = Field(default=None, description="动作。")
    description: str | None = Field(default=None, description="权限说明。")
    is_system: bool | None = Field(default=None, description="是否系统内置。")


class RoleCreateRequest(BaseSchema):
    """创建角色请求。"""

    name: str | None = Field(default=None, description="角色名称。", examples=["Teacher"])
    slug: str | None = Field(default=None, description="角色短标识，令牌 role 声明按此匹配。", examples=["teacher"])
    description: str | None = Field(default=None, description="角色说明。")
    is_system: bool | None = Field(default=None, description="是否系统内置角色。")
    tenant_scope: str | None = Field(
        default=None, description="适用范围：system 为平台级，tenant 为租户管理员可维护。", examples=["tenant"]
    )


class RoleUpdateRequest(BaseSchema):
    """部分更新角色请求，仅提交的字段会被修改。"""

    name: str | None = Field(default=None, description="角色名称。")
    slug: str | None = Field(default=None, description="角色短标识。")
    description: str | None = Field(default=None, description="角色说明。")
    is_system: bool | None = Field(default=None, description="是否系统内置角色。")
    tenant_scope: str | None = Field(default=None, description="适用范围。")


class RolePermissionAttachRequest(BaseSchema):
    """为角色挂载权限。"""

    permission_id: str | None = Field(default=None, description="权限 ID。")


class PermissionData(BaseSchema):
    """权限详情。"""

    id: UUID = Field(description="权限 ID。")
    name: str = Field(description="权限名称。")
    slug: str = Field(description="全局唯一短标识。")
    resource: str = Field(description="资源类型。")
    action: str = Field(description="动作。")
    description: str | None = Field(default=None, description="权限说明。")
    is_system: bool = Field(description="是否系统内置。")
    created_at: datetime | None = Field(default=None, description="创建时间。")
    updated_at: datetime | None = Field(default=None, description="更新时间。")


class RoleData(BaseSchema):
    """角色详情。"""

    id: UUID = Field(description="角色 ID。")
    name: str = Field(description="角色名称。")
    slug: str = Field(description="角色短标识。")
    description: str | None = Field(default=None, description="角色说明。")
    is_system: bool = Field(description="是否系统内置角色。")
    tenant_scope: str | None = Field(default=None, description="适用范围。")
    created_at: datetime | None = Field(default=None, description="创建时间。")


class RolePermissionData(BaseSchema):
    """角色-权限关联。"""

    id: UUID = Field(description="关联 ID。")
    role_id: UUID = Field(description="角色 ID。")
    permission_id: UUID = Field(description="权限 ID。")
