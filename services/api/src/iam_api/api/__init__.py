"""路由模块导出集合。"""

from . import health, me, permissions, policies, roles, users

__all__ = [
    "health",
    "me",
    "permissions",
    "policies",
    "roles",
    "users",
]
