"""用户角色分配与权限覆盖相关结构。"""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from iam_api.schemas.common import BaseSchema
from iam_api.schemas.permission import PermissionData, RoleData


class RoleAssignRequest(BaseSchema):
    """为用户分配角色。tenantId 为空表示全局分配。"""

    role_id: str | None = Field(default=None, description="角色 ID。")
    tenant_id: str | None = Field(default=None, description="租户范围，可为空。", examples=["t1"])


class PermissionOverrideRequest(BaseSchema):
    """为用户写入权限覆盖；granted=false 表示显式拒绝。"""

    permission_id: str | None = Field(default=None, description="权限 ID。")
    tenant_id: str | None = Field(default=None, description="租户范围，可为空。")
    granted: bool = Field(default=True, description="true 为显式授予，false 为显式拒绝。")


class RoleAssignmentData(BaseSchema):
    """角色分配记录。"""

    id: UUID = Field(description="分配记录 ID。")
    user_id: UUID = Field(description="用户 ID。")
    role_id: UUID = Field(description="角色 ID。")
    tenant_id: str | None = Field(default=None, description="租户范围，空表示全局。")
    created_at: datetime | None = Field(default=None, description="分配时间。")


class PermissionOverrideData(BaseSchema):
    """权限覆盖记录。"""

    id: UUID = Field(description="覆盖记录 ID。")
    user_id: UUID = Field(description="用户 ID。")
    permission_id: UUID = Field(description="权限 ID。")
    tenant_id: str | None = Field(default=None, description="租户范围，空表示全局。")
    granted: bool = Field(description="true 为授予，false 为拒绝。")
    created_at: datetime | None = Field(default=None, description="创建时间。")
    updated_at: datetime | None = Field(default=None, description="最后写入时间。")


class UserRoleItem(RoleData):
    """用户已分配的角色（附带分配范围）。"""

    assignment_id: UUID = Field(description="分配记录 ID。")
    tenant_id: str | None = Field(default=None, description="租户范围，空表示全局。")


class UserPermissionItem(PermissionData):
    """用户的权限覆盖（附带权限详情）。"""

    override_id: UUID = Field(description="覆盖记录 ID。")
    tenant_id: str | None = Field(default=None, description="租户范围，空表示全局。")
    granted: bool = Field(description="true 为授予，false 为拒绝。")
