"""ORM 模型导出集合。"""

from iam_api.models.permission import Permission, Role, RolePermission, UserPermission, UserRole
from iam_api.models.policy import ResourcePolicy
from iam_api.models.user import User

__all__ = [
    "Permission",
    "ResourcePolicy",
    "Role",
    "RolePermission",
    "User",
    "UserPermission",
    "UserRole",
]
