"""授权事实存储适配层。

封装角色分配、权限覆盖、权限与角色定义的读写。
组合键唯一性交给数据库约束兜底：upsert 先按组合键读取，
不存在再插入，并发插入撞上唯一约束时回读已存在的行。
插入放在保存点内，失败只回滚保存点，不影响请求内其他写入。
"""

from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import Select, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from iam_api.models.permission import Permission, Role, RolePermission, UserPermission, UserRole
from iam_api.models.policy import ResourcePolicy
from iam_api.models.user import User


@dataclass
class PermissionFilter:
    """权限列表过滤条件（均为忽略大小写的子串匹配）。"""

    q: str | None = None
    resource: str | None = None
    action: str | None = None


def parse_uuid(value: str | UUID | None) -> UUID | None:
    """宽松解析 UUID，非法值返回 None。"""
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value).strip())
    except ValueError:
        return None


def _tenant_scope_clause(column, tenant_id: str | None):
    """全局记录始终生效，租户记录仅在同一租户范围内生效。"""
    if tenant_id is None:
        return column.is_(None)
    return or_(column.is_(None), column == tenant_id)


def _same_scope_clause(column, tenant_id: str | None):
    """按组合键精确匹配租户范围（空值视为全局）。"""
    if tenant_id is None:
        return column.is_(None)
    return column == tenant_id


def _contains(column, value: str):
    return func.lower(column).contains(value.strip().lower(), autoescape=True)


class FactStore:
    """基于 SQLAlchemy 会话的事实存储。"""

    def __init__(self, db: Session) -> None:
        self.db = db

    # ---- 读取 ----

    def get_user(self, user_id: UUID) -> User | None:
        return self.db.get(User, user_id)

    def get_role(self, role_id: UUID) -> Role | None:
        return self.db.get(Role, role_id)

    def get_permission(self, permission_id: UUID) -> Permission | None:
        return self.db.get(Permission, permission_id)

    def find_permission_by_slug(self, slug: str) -> Permission | None:
        return self.db.execute(select(Permission).where(Permission.slug == slug)).scalar_one_or_none()

    def find_role_by_slug(self, slug: str) -> Role | None:
        return self.db.execute(select(Role).where(Role.slug == slug)).scalar_one_or_none()

    def find_roles(self, keys: Iterable[str]) -> list[Role]:
        """按 ID 或 slug 批量查找角色。"""
        keys = {key for key in keys if key}
        if not keys:
            return []
        ids = [parsed for key in keys if (parsed := parse_uuid(key)) is not None]
        clause = Role.slug.in_(list(keys))
        if ids:
            clause = or_(clause, Role.id.in_(ids))
        return list(self.db.execute(select(Role).where(clause)).scalars().all())

    def find_role_assignments(self, user_id: UUID, tenant_id: str | None = None) -> list[UserRole]:
        """返回在该租户范围内生效的角色分配（含全局分配）。"""
        stmt = (
            select(UserRole)
            .where(UserRole.user_id == user_id)
            .where(_tenant_scope_clause(UserRole.tenant_id, tenant_id))
        )
        return list(self.db.execute(stmt).scalars().all())

    def find_permission_overrides(self, user_id: UUID, tenant_id: str | None = None) -> list[UserPermission]:
        """返回在该租户范围内生效的权限覆盖（含全局覆盖）。"""
        stmt = (
            select(UserPermission)
            .where(UserPermission.user_id == user_id)
            .where(_tenant_scope_clause(UserPermission.tenant_id, tenant_id))
        )
        return list(self.db.execute(stmt).scalars().all())

    def permissions_for_roles(self, role_ids: Iterable[UUID]) -> dict[UUID, list[Permission]]:
        """批量展开角色权限。"""
        role_ids = list(set(role_ids))
        if not role_ids:
            return {}
        rows = self.db.execute(
            select(RolePermission.role_id, Permission)
            .join(Permission, Permission.id == RolePermission.permission_id)
            .where(RolePermission.role_id.in_(role_ids))
        ).all()
        mapping: dict[UUID, list[Permission]] = {role_id: [] for role_id in role_ids}
        for role_id, permission in rows:
            mapping[role_id].append(permission)
        return mapping

    def permissions_by_ids(self, permission_ids: Iterable[UUID]) -> dict[UUID, Permission]:
        permission_ids = list(set(permission_ids))
        if not permission_ids:
            return {}
        rows = self.db.execute(select(Permission).where(Permission.id.in_(permission_ids))).scalars().all()
        return {row.id: row for row in rows}

    def list_user_roles(self, user_id: UUID, tenant_id: str | None = None) -> list[tuple[UserRole, Role]]:
        """列出用户角色分配；给定 tenant_id 时只返回该租户范围的分配。"""
        stmt = select(UserRole, Role).join(Role, Role.id == UserRole.role_id).where(UserRole.user_id == user_id)
        if tenant_id is not None:
            stmt = stmt.where(UserRole.tenant_id == tenant_id)
        rows = self.db.execute(stmt.order_by(Role.slug.asc())).all()
        return [(assignment, role) for assignment, role in rows]

    def list_user_permissions(
        self, user_id: UUID, tenant_id: str | None = None
    ) -> list[tuple[UserPermission, Permission]]:
        stmt = (
            select(UserPermission, Permission)
            .join(Permission, Permission.id == UserPermission.permission_id)
            .where(UserPermission.user_id == user_id)
        )
        if tenant_id is not None:
            stmt = stmt.where(UserPermission.tenant_id == tenant_id)
        rows = self.db.execute(stmt.order_by(Permission.resource.asc(), Permission.action.asc())).all()
        return [(override, permission) for override, permission in rows]

    def list_role_permissions(self, role_id: UUID) -> list[Permission]:
        return list(
            self.db.execute(
                select(Permission)
                .join(RolePermission, RolePermission.permission_id == Permission.id)
                .where(RolePermission.role_id == role_id)
                .order_by(Permission.resource.asc(), Permission.action.asc())
            )
            .scalars()
            .all()
        )

    def list_permissions(self, filters: PermissionFilter, *, limit: int) -> list[Permission]:
        """按过滤条件查询权限，默认 (resource, action) 升序并截断到 limit 行。"""
        stmt: Select = select(Permission)
        if filters.q:
            stmt = stmt.where(
                or_(
                    _contains(Permission.name, filters.q),
                    _contains(Permission.slug, filters.q),
                    _contains(Permission.resource, filters.q),
                    _contains(Permission.action, filters.q),
                )
            )
        if filters.resource:
            stmt = stmt.where(_contains(Permission.resource, filters.resource))
        if filters.action:
            stmt = stmt.where(_contains(Permission.action, filters.action))
        stmt = stmt.order_by(Permission.resource.asc(), Permission.action.asc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def list_roles(self, *, q: str | None, slug: str | None, limit: int) -> list[Role]:
        """系统角色优先，其次按创建时间倒序。"""
        stmt: Select = select(Role)
        if q:
            stmt = stmt.where(or_(_contains(Role.name, q), _contains(Role.slug, q)))
        if slug:
            stmt = stmt.where(_contains(Role.slug, slug))
        stmt = stmt.order_by(Role.is_system.desc(), Role.created_at.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    # ---- 写入 ----

    def _insert(self, row):
        """在保存点内插入；违反约束时保存点回滚并抛出 IntegrityError。"""
        with self.db.begin_nested():
            self.db.add(row)
        return row

    def create_permission(self, **values) -> Permission:
        """插入权限；slug 冲突时由调用方处理 IntegrityError。"""
        return self._insert(Permission(**values))

    def delete_permission(self, permission: Permission) -> None:
        """删除权限并清理其关联关系。"""
        self.db.execute(delete(RolePermission).where(RolePermission.permission_id == permission.id))
        self.db.execute(delete(UserPermission).where(UserPermission.permission_id == permission.id))
        self.db.delete(permission)
        self.db.flush()

    def create_role(self, **values) -> Role:
        return self._insert(Role(**values))

    def delete_role(self, role: Role) -> None:
        """删除角色并清理权限关联与用户分配。"""
        self.db.execute(delete(RolePermission).where(RolePermission.role_id == role.id))
        self.db.execute(delete(UserRole).where(UserRole.role_id == role.id))
        self.db.delete(role)
        self.db.flush()

    def _find_role_assignment(self, *, user_id: UUID, role_id: UUID, tenant_id: str | None) -> UserRole | None:
        return self.db.execute(
            select(UserRole)
            .where(UserRole.user_id == user_id)
            .where(UserRole.role_id == role_id)
            .where(_same_scope_clause(UserRole.tenant_id, tenant_id))
        ).scalar_one_or_none()

    def _find_permission_override(
        self,
        *,
        user_id: UUID,
        permission_id: UUID,
        tenant_id: str | None,
    ) -> UserPermission | None:
        return self.db.execute(
            select(UserPermission)
            .where(UserPermission.user_id == user_id)
            .where(UserPermission.permission_id == permission_id)
            .where(_same_scope_clause(UserPermission.tenant_id, tenant_id))
        ).scalar_one_or_none()

    def _find_role_permission(self, *, role_id: UUID, permission_id: UUID) -> RolePermission | None:
        return self.db.execute(
            select(RolePermission)
            .where(RolePermission.role_id == role_id)
            .where(RolePermission.permission_id == permission_id)
        ).scalar_one_or_none()

    def _insert_or_reread(self, row, reread):
        """插入新行；并发写入撞唯一约束时回滚保存点并返回已存在的行。"""
        try:
            self._insert(row)
        except IntegrityError:
            existing = reread()
            if existing is None:
                raise
            return existing, False
        return row, True

    def upsert_role_assignment(self, *, user_id: UUID, role_id: UUID, tenant_id: str | None) -> tuple[UserRole, bool]:
        """幂等分配角色，返回 (记录, 是否新建)。"""

        def reread() -> UserRole | None:
            return self._find_role_assignment(user_id=user_id, role_id=role_id, tenant_id=tenant_id)

        existing = reread()
        if existing is not None:
            return existing, False
        return self._insert_or_reread(UserRole(user_id=user_id, role_id=role_id, tenant_id=tenant_id), reread)

    def upsert_permission_override(
        self,
        *,
        user_id: UUID,
        permission_id: UUID,
        tenant_id: str | None,
        granted: bool,
    ) -> tuple[UserPermission, bool]:
        """幂等写入权限覆盖；已存在时仅更新 granted（后写覆盖先写）。"""

        def reread() -> UserPermission | None:
            return self._find_permission_override(user_id=user_id, permission_id=permission_id, tenant_id=tenant_id)

        existing = reread()
        if existing is None:
            row, created = self._insert_or_reread(
                UserPermission(user_id=user_id, permission_id=permission_id, tenant_id=tenant_id, granted=granted),
                reread,
            )
            if created:
                return row, True
            existing = row
        existing.granted = granted
        self.db.flush()
        return existing, False

    def attach_role_permission(self, *, role_id: UUID, permission_id: UUID) -> tuple[RolePermission, bool]:
        def reread() -> RolePermission | None:
            return self._find_role_permission(role_id=role_id, permission_id=permission_id)

        existing = reread()
        if existing is not None:
            return existing, False
        return self._insert_or_reread(RolePermission(role_id=role_id, permission_id=permission_id), reread)

    def delete_role_assignment(self, *, user_id: UUID, role_id: UUID, tenant_id: str | None) -> bool:
        """删除角色分配；记录不存在时返回 False。"""
        existing = self._find_role_assignment(user_id=user_id, role_id=role_id, tenant_id=tenant_id)
        if existing is None:
            return False
        self.db.delete(existing)
        self.db.flush()
        return True

    def delete_permission_override(self, *, user_id: UUID, permission_id: UUID, tenant_id: str | None) -> bool:
        """删除权限覆盖；记录不存在时返回 False。"""
        existing = self._find_permission_override(user_id=user_id, permission_id=permission_id, tenant_id=tenant_id)
        if existing is None:
            return False
        self.db.delete(existing)
        self.db.flush()
        return True

    def detach_role_permission(self, *, role_id: UUID, permission_id: UUID) -> bool:
        existing = self._find_role_permission(role_id=role_id, permission_id=permission_id)
        if existing is None:
            return False
        self.db.delete(existing)
        self.db.flush()
        return True

    # ---- 资源策略 ----

    def find_active_policies(self, tenant_id: str | None = None) -> list[ResourcePolicy]:
        """返回在该租户范围内生效的启用策略（含全局策略），优先级高的在前。"""
        stmt = (
            select(ResourcePolicy)
            .where(ResourcePolicy.is_active.is_(True))
            .where(_tenant_scope_clause(ResourcePolicy.tenant_id, tenant_id))
            .order_by(ResourcePolicy.priority.desc(), ResourcePolicy.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_policy(self, policy_id: UUID) -> ResourcePolicy | None:
        return self.db.get(ResourcePolicy, policy_id)

    def list_policies(self, *, resource: str | None, tenant_id: str | None, limit: int) -> list[ResourcePolicy]:
        stmt: Select = select(ResourcePolicy)
        if resource:
            stmt = stmt.where(func.lower(ResourcePolicy.resource) == resource.strip().lower())
        if tenant_id:
            stmt = stmt.where(ResourcePolicy.tenant_id == tenant_id)
        stmt = stmt.order_by(ResourcePolicy.priority.desc(), ResourcePolicy.created_at.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def create_policy(self, **values) -> ResourcePolicy:
        return self._insert(ResourcePolicy(**values))

    def delete_policy(self, policy: ResourcePolicy) -> None:
        self.db.delete(policy)
        self.db.flush()
