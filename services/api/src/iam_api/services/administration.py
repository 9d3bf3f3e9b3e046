"""授权事实管理：权限、角色、角色分配、用户权限覆盖与资源策略。

路由层先通过守卫校验操作权限，再调用这里的函数。
每个变更操作都会先确认目标用户/角色/权限存在，不存在时抛出 404，
与授权失败（403）区分开。
"""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from iam_api.core.logging import get_logger
from iam_api.exceptions import ConflictFailure, NotFound, ValidationFailure
from iam_api.models.permission import Permission, Role, UserPermission, UserRole
from iam_api.models.policy import POLICY_EFFECT_ALLOW, POLICY_EFFECT_DENY, ResourcePolicy
from iam_api.models.user import User
from iam_api.services.fact_store import FactStore, PermissionFilter, parse_uuid

logger = get_logger("administration")

PERMISSION_REQUIRED_FIELDS = ("name", "slug", "resource", "action")
ROLE_REQUIRED_FIELDS = ("name", "slug")
POLICY_REQUIRED_FIELDS = ("name", "resource", "effect")
POLICY_EFFECTS = (POLICY_EFFECT_ALLOW, POLICY_EFFECT_DENY)


@dataclass
class Upserted:
    """幂等写入结果。"""

    row: Any
    created: bool


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _require_fields(values: dict[str, Any], required: tuple[str, ...]) -> None:
    missing = [name for name in required if not _clean(values.get(name))]
    if missing:
        raise ValidationFailure(
            f"{', '.join(missing)} {'is' if len(missing) == 1 else 'are'} required",
            details={"missing": missing},
        )


def normalize_tenant(tenant_id: str | None) -> str | None:
    """空白租户视为全局（None）。"""
    return _clean(tenant_id)


def _ensure_user(store: FactStore, user_id: UUID | str) -> User:
    parsed = parse_uuid(user_id)
    user = store.get_user(parsed) if parsed is not None else None
    if user is None:
        raise NotFound("User not found")
    return user


def _ensure_role(store: FactStore, role_id: UUID | str) -> Role:
    parsed = parse_uuid(role_id)
    role = store.get_role(parsed) if parsed is not None else None
    if role is None:
        raise NotFound("Role not found")
    return role


def _ensure_permission(store: FactStore, permission_id: UUID | str) -> Permission:
    parsed = parse_uuid(permission_id)
    permission = store.get_permission(parsed) if parsed is not None else None
    if permission is None:
        raise NotFound("Permission not found")
    return permission


def _require_id(value: UUID | str | None, field_name: str) -> UUID | str:
    if value is None or not str(value).strip():
        raise ValidationFailure(f"{field_name} is required", details={"missing": [field_name]})
    return value


def _assignment_key(value: UUID | str | None, field_name: str) -> UUID:
    """撤销操作的关联 ID；缺失报 400，无法解析时按记录不存在处理。"""
    parsed = parse_uuid(_require_id(value, field_name))
    if parsed is None:
        raise NotFound("Assignment not found")
    return parsed


def _slug_conflict(slug: str) -> ConflictFailure:
    return ConflictFailure(f"slug '{slug}' already exists", code="SLUG_CONFLICT", details={"slug": slug})


# ---- 权限 ----


def create_permission(store: FactStore, values: dict[str, Any]) -> Permission:
    """创建权限：四个必填字段缺一不可，slug 冲突返回 409 且不改动数据。"""
    _require_fields(values, PERMISSION_REQUIRED_FIELDS)
    slug = _clean(values["slug"])
    if store.find_permission_by_slug(slug) is not None:
        raise _slug_conflict(slug)
    try:
        permission = store.create_permission(
            name=_clean(values["name"]),
            slug=slug,
            resource=_clean(values["resource"]),
            action=_clean(values["action"]),
            description=values.get("description"),
            is_system=bool(values.get("is_system") or False),
        )
    except IntegrityError as exc:
        raise _slug_conflict(slug) from exc
    logger.info("permission created id=%s slug=%s", permission.id, permission.slug)
    return permission


def list_permissions(store: FactStore, filters: PermissionFilter, *, limit: int) -> list[Permission]:
    return store.list_permissions(filters, limit=limit)


def get_permission(store: FactStore, permission_id: UUID | str) -> Permission:
    return _ensure_permission(store, permission_id)


def update_permission(store: FactStore, permission_id: UUID | str, changes: dict[str, Any]) -> Permission:
    """部分更新权限；显式传空字符串的必填字段视为非法。"""
    permission = _ensure_permission(store, permission_id)
    blank = [name for name in PERMISSION_REQUIRED_FIELDS if name in changes and not _clean(changes[name])]
    if blank:
        raise ValidationFailure(f"{', '.join(blank)} must not be empty", details={"missing": blank})

    new_slug = _clean(changes.get("slug"))
    if new_slug and new_slug != permission.slug and store.find_permission_by_slug(new_slug) is not None:
        raise _slug_conflict(new_slug)

    try:
        with store.db.begin_nested():
            for name in PERMISSION_REQUIRED_FIELDS:
                if name in changes:
                    setattr(permission, name, _clean(changes[name]))
            if "description" in changes:
                permission.description = changes["description"]
            if "is_system" in changes and changes["is_system"] is not None:
                permission.is_system = bool(changes["is_system"])
    except IntegrityError as exc:
        raise _slug_conflict(new_slug or permission.slug) from exc
    logger.info("permission updated id=%s fields=%s", permission.id, sorted(changes))
    return permission


def delete_permission(store: FactStore, permission_id: UUID | str) -> None:
    """删除权限；系统权限受保护。"""
    permission = _ensure_permission(store, permission_id)
    if permission.is_system:
        raise ConflictFailure("system permission cannot be deleted", code="PERMISSION_PROTECTED")
    deleted_id, slug = permission.id, permission.slug
    store.delete_permission(permission)
    logger.info("permission deleted id=%s slug=%s", deleted_id, slug)


# ---- 角色 ----


def create_role(store: FactStore, values: dict[str, Any]) -> Role:
    _require_fields(values, ROLE_REQUIRED_FIELDS)
    slug = _clean(values["slug"])
    if store.find_role_by_slug(slug) is not None:
        raise _slug_conflict(slug)
    try:
        role = store.create_role(
            name=_clean(values["name"]),
            slug=slug,
            description=values.get("description"),
            is_system=bool(values.get("is_system") or False),
            tenant_scope=_clean(values.get("tenant_scope")),
        )
    except IntegrityError as exc:
        raise _slug_conflict(slug) from exc
    logger.info("role created id=%s slug=%s", role.id, role.slug)
    return role


def list_roles(store: FactStore, *, q: str | None, slug: str | None, limit: int) -> list[Role]:
    return store.list_roles(q=_clean(q), slug=_clean(slug), limit=limit)


def get_role(store: FactStore, role_id: UUID | str) -> Role:
    return _ensure_role(store, role_id)


def update_role(store: FactStore, role_id: UUID | str, changes: dict[str, Any]) -> Role:
    """部分更新角色；slug 变更校验唯一性。"""
    role = _ensure_role(store, role_id)
    blank = [name for name in ROLE_REQUIRED_FIELDS if name in changes and not _clean(changes[name])]
    if blank:
        raise ValidationFailure(f"{', '.join(blank)} must not be empty", details={"missing": blank})

    new_slug = _clean(changes.get("slug"))
    if new_slug and new_slug != role.slug and store.find_role_by_slug(new_slug) is not None:
        raise _slug_conflict(new_slug)

    try:
        with store.db.begin_nested():
            for name in ROLE_REQUIRED_FIELDS:
                if name in changes:
                    setattr(role, name, _clean(changes[name]))
            if "description" in changes:
                role.description = changes["description"]
            if "tenant_scope" in changes:
                role.tenant_scope = _clean(changes["tenant_scope"])
            if "is_system" in changes and changes["is_system"] is not None:
                role.is_system = bool(changes["is_system"])
    except IntegrityError as exc:
        raise _slug_conflict(new_slug or role.slug) from exc
    logger.info("role updated id=%s fields=%s", role.id, sorted(changes))
    return role


def delete_role(store: FactStore, role_id: UUID | str) -> None:
    """删除角色及其权限关联与用户分配；系统角色受保护。"""
    role = _ensure_role(store, role_id)
    if role.is_system:
        raise ConflictFailure("system role cannot be deleted", code="ROLE_PROTECTED")
    deleted_id, slug = role.id, role.slug
    store.delete_role(role)
    logger.info("role deleted id=%s slug=%s", deleted_id, slug)


def list_role_permissions(store: FactStore, role_id: UUID | str) -> list[Permission]:
    role = _ensure_role(store, role_id)
    return store.list_role_permissions(role.id)


def attach_role_permission(store: FactStore, role_id: UUID | str, permission_id: UUID | str | None) -> Upserted:
    role = _ensure_role(store, role_id)
    permission = _ensure_permission(store, _require_id(permission_id, "permissionId"))
    row, created = store.attach_role_permission(role_id=role.id, permission_id=permission.id)
    if created:
        logger.info("role permission attached role=%s permission=%s", role.slug, permission.slug)
    return Upserted(row=row, created=created)


def detach_role_permission(store: FactStore, role_id: UUID | str, permission_id: UUID | str | None) -> None:
    role = _ensure_role(store, role_id)
    key = _assignment_key(permission_id, "permissionId")
    if not store.detach_role_permission(role_id=role.id, permission_id=key):
        raise NotFound("Assignment not found")
    logger.info("role permission detached role=%s permission=%s", role.slug, key)


# ---- 用户角色分配 ----


def list_user_roles(
    store: FactStore, user_id: UUID | str, tenant_id: str | None = None
) -> list[tuple[UserRole, Role]]:
    user = _ensure_user(store, user_id)
    return store.list_user_roles(user.id, normalize_tenant(tenant_id))


def assign_role(
    store: FactStore,
    user_id: UUID | str,
    role_id: UUID | str | None,
    tenant_id: str | None = None,
) -> Upserted:
    """幂等分配角色：重复分配直接返回已有记录。"""
    role = _ensure_role(store, _require_id(role_id, "roleId"))
    user = _ensure_user(store, user_id)
    row, created = store.upsert_role_assignment(
        user_id=user.id,
        role_id=role.id,
        tenant_id=normalize_tenant(tenant_id),
    )
    if created:
        logger.info("role assigned user=%s role=%s tenant=%s", user.id, role.slug, row.tenant_id)
    return Upserted(row=row, created=created)


def revoke_role(
    store: FactStore,
    user_id: UUID | str,
    role_id: UUID | str | None,
    tenant_id: str | None = None,
) -> None:
    """撤销角色分配；分配不存在时报 404。"""
    user = _ensure_user(store, user_id)
    key = _assignment_key(role_id, "roleId")
    tenant = normalize_tenant(tenant_id)
    if not store.delete_role_assignment(user_id=user.id, role_id=key, tenant_id=tenant):
        raise NotFound("Assignment not found")
    logger.info("role revoked user=%s role=%s tenant=%s", user.id, key, tenant)


# ---- 用户权限覆盖 ----


def list_user_permissions(
    store: FactStore, user_id: UUID | str, tenant_id: str | None = None
) -> list[tuple[UserPermission, Permission]]:
    user = _ensure_user(store, user_id)
    return store.list_user_permissions(user.id, normalize_tenant(tenant_id))


def assign_permission_override(
    store: FactStore,
    user_id: UUID | str,
    permission_id: UUID | str | None,
    *,
    tenant_id: str | None = None,
    granted: bool = True,
) -> Upserted:
    """幂等写入授予/拒绝覆盖；已存在时仅更新 granted。"""
    permission = _ensure_permission(store, _require_id(permission_id, "permissionId"))
    user = _ensure_user(store, user_id)
    row, created = store.upsert_permission_override(
        user_id=user.id,
        permission_id=permission.id,
        tenant_id=normalize_tenant(tenant_id),
        granted=granted,
    )
    logger.info(
        "permission override %s user=%s permission=%s tenant=%s granted=%s",
        "created" if created else "updated",
        user.id,
        permission.slug,
        row.tenant_id,
        row.granted,
    )
    return Upserted(row=row, created=created)


def revoke_permission_override(
    store: FactStore,
    user_id: UUID | str,
    permission_id: UUID | str | None,
    tenant_id: str | None = None,
) -> None:
    user = _ensure_user(store, user_id)
    key = _assignment_key(permission_id, "permissionId")
    tenant = normalize_tenant(tenant_id)
    if not store.delete_permission_override(user_id=user.id, permission_id=key, tenant_id=tenant):
        raise NotFound("Assignment not found")
    logger.info("permission override revoked user=%s permission=%s tenant=%s", user.id, key, tenant)


# ---- 资源策略 ----


def _ensure_policy(store: FactStore, policy_id: UUID | str) -> ResourcePolicy:
    parsed = parse_uuid(policy_id)
    policy = store.get_policy(parsed) if parsed is not None else None
    if policy is None:
        raise NotFound("Policy not found")
    return policy


def _policy_effect(value: Any) -> str:
    effect = (_clean(value) or "").lower()
    if effect not in POLICY_EFFECTS:
        raise ValidationFailure("effect must be 'allow' or 'deny'", details={"effect": value})
    return effect


def list_policies(
    store: FactStore,
    *,
    resource: str | None = None,
    tenant_id: str | None = None,
    limit: int,
) -> list[ResourcePolicy]:
    return store.list_policies(resource=_clean(resource), tenant_id=normalize_tenant(tenant_id), limit=limit)


def get_policy(store: FactStore, policy_id: UUID | str) -> ResourcePolicy:
    return _ensure_policy(store, policy_id)


def create_policy(store: FactStore, values: dict[str, Any], *, default_tenant_id: str | None = None) -> ResourcePolicy:
    """创建策略；未指定租户时落在调用方租户下，调用方无租户时为全局策略。"""
    _require_fields(values, POLICY_REQUIRED_FIELDS)
    policy = store.create_policy(
        name=_clean(values["name"]),
        resource=_clean(values["resource"]),
        effect=_policy_effect(values["effect"]),
        conditions=values.get("conditions") or {},
        priority=values.get("priority") or 0,
        tenant_id=normalize_tenant(values.get("tenant_id")) or default_tenant_id,
        is_active=True if values.get("is_active") is None else bool(values["is_active"]),
    )
    logger.info(
        "policy created id=%s resource=%s effect=%s tenant=%s",
        policy.id,
        policy.resource,
        policy.effect,
        policy.tenant_id,
    )
    return policy


def update_policy(store: FactStore, policy_id: UUID | str, changes: dict[str, Any]) -> ResourcePolicy:
    """部分更新策略；tenantId 显式置空表示改为全局策略。"""
    policy = _ensure_policy(store, policy_id)
    blank = [name for name in POLICY_REQUIRED_FIELDS if name in changes and not _clean(changes[name])]
    if blank:
        raise ValidationFailure(f"{', '.join(blank)} must not be empty", details={"missing": blank})

    if "effect" in changes:
        policy.effect = _policy_effect(changes["effect"])
    for name in ("name", "resource"):
        if name in changes:
            setattr(policy, name, _clean(changes[name]))
    if "conditions" in changes:
        policy.conditions = changes["conditions"] or {}
    if changes.get("priority") is not None:
        policy.priority = changes["priority"]
    if changes.get("is_active") is not None:
        policy.is_active = bool(changes["is_active"])
    if "tenant_id" in changes:
        policy.tenant_id = normalize_tenant(changes["tenant_id"])
    store.db.flush()
    logger.info("policy updated id=%s fields=%s", policy.id, sorted(changes))
    return policy


def delete_policy(store: FactStore, policy_id: UUID | str) -> None:
    policy = _ensure_policy(store, policy_id)
    deleted_id = policy.id
    store.delete_policy(policy)
    logger.info("policy deleted id=%s", deleted_id)
