"""角色管理接口。

针对单个角色的操作分两步校验：先做类型级校验（401/403），
角色存在后再以角色属性作为目标记录做记录级校验，
带 tenantScope 条件的管理员只能维护租户级角色。
"""

from typing import Any

from fastapi import APIRouter, Depends, Path, Query, Request, status
from sqlalchemy.orm import Session

from iam_api.core.config import Settings, get_settings
from iam_api.db.session import get_db
from iam_api.dependencies import get_authorization, get_fact_store, require_identity
from iam_api.models.permission import Role
from iam_api.schemas.common import ErrorResponse, OperationResult, SuccessResponse
from iam_api.schemas.permission import (
    PermissionData,
    RoleCreateRequest,
    RoleData,
    RolePermissionAttachRequest,
    RolePermissionData,
    RoleUpdateRequest,
)
from iam_api.services import administration
from iam_api.services.fact_store import FactStore
from iam_api.services.guard import RequestAuthorization
from iam_api.services.vocabulary import Action, RequiredRule, Subject
from iam_api.utils.response import list_success

router = APIRouter(prefix="/roles", tags=["roles"], dependencies=[Depends(require_identity)])

_GUARDED = {401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}}
_GUARDED_ITEM = {**_GUARDED, 404: {"model": ErrorResponse}}


def _role_target(role: Role) -> dict[str, Any]:
    return {"id": str(role.id), "slug": role.slug, "tenantScope": role.tenant_scope, "isSystem": role.is_system}


def _authorized_role(auth: RequestAuthorization, store: FactStore, action: Action, role_id: str) -> Role:
    """类型级校验 → 查找角色（404）→ 记录级校验。"""
    auth.require(RequiredRule(action, Subject.ROLE))
    role = administration.get_role(store, role_id)
    auth.require(RequiredRule(action, Subject.ROLE, target=_role_target(role)))
    return role


@router.get(
    "",
    summary="查询角色列表",
    description="系统角色在前，其余按创建时间倒序；与权限列表共用返回上限。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[list[RoleData]],
    responses=_GUARDED,
)
def list_roles(
    request: Request,
    q: str | None = Query(default=None, description="匹配名称或 slug。"),
    slug: str | None = Query(default=None, description="按 slug 过滤。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    settings: Settings = Depends(get_settings),
):
    auth.require(RequiredRule(Action.READ, Subject.ROLE))
    roles = administration.list_roles(store, q=q, slug=slug, limit=settings.permission_list_limit)
    return list_success(request, [RoleData.model_validate(role) for role in roles])


@router.post(
    "",
    summary="创建角色",
    description="name、slug 必填；slug 重复返回 409。",
    status_code=status.HTTP_201_CREATED,
    response_model=RoleData,
    responses={**_GUARDED, 400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def create_role(
    payload: RoleCreateRequest,
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    db: Session = Depends(get_db),
):
    target = {"tenantScope": administration.normalize_tenant(payload.tenant_scope), "isSystem": bool(payload.is_system)}
    auth.require(RequiredRule(Action.CREATE, Subject.ROLE, target=target))
    role = administration.create_role(store, payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(role)
    return RoleData.model_validate(role)


@router.get(
    "/{role_id}",
    summary="查询角色详情",
    status_code=status.HTTP_200_OK,
    response_model=RoleData,
    responses=_GUARDED_ITEM,
)
def get_role(
    role_id: str = Path(..., description="角色 ID。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
):
    return RoleData.model_validate(_authorized_role(auth, store, Action.READ, role_id))


@router.put(
    "/{role_id}",
    summary="更新角色",
    description="仅修改请求中出现的字段；修改 slug 时校验唯一性。",
    status_code=status.HTTP_200_OK,
    response_model=RoleData,
    responses={**_GUARDED_ITEM, 400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def update_role(
    payload: RoleUpdateRequest,
    role_id: str = Path(..., description="角色 ID。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    db: Session = Depends(get_db),
):
    role = _authorized_role(auth, store, Action.UPDATE, role_id)
    changes = payload.model_dump(exclude_unset=True)
    if "tenant_scope" in changes or "is_system" in changes:
        # 修改后的角色同样要落在调用方可维护的范围内。
        moved = {**_role_target(role)}
        if "tenant_scope" in changes:
            moved["tenantScope"] = administration.normalize_tenant(changes["tenant_scope"])
        if changes.get("is_system") is not None:
            moved["isSystem"] = bool(changes["is_system"])
        auth.require(RequiredRule(Action.UPDATE, Subject.ROLE, target=moved))
    role = administration.update_role(store, role.id, changes)
    db.commit()
    db.refresh(role)
    return RoleData.model_validate(role)


@router.delete(
    "/{role_id}",
    summary="删除角色",
    description="同时清理角色权限关联与用户角色分配；系统角色返回 409。",
    status_code=status.HTTP_200_OK,
    response_model=OperationResult,
    responses={**_GUARDED_ITEM, 409: {"model": ErrorResponse}},
)
def delete_role(
    role_id: str = Path(..., description="角色 ID。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    db: Session = Depends(get_db),
):
    role = _authorized_role(auth, store, Action.DELETE, role_id)
    administration.delete_role(store, role.id)
    db.commit()
    return {"success": True}


@router.get(
    "/{role_id}/permissions",
    summary="查询角色权限",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[list[PermissionData]],
    responses=_GUARDED_ITEM,
)
def list_role_permissions(
    request: Request,
    role_id: str = Path(..., description="角色 ID。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
):
    role = _authorized_role(auth, store, Action.READ, role_id)
    permissions = administration.list_role_permissions(store, role.id)
    return list_success(request, [PermissionData.model_validate(permission) for permission in permissions])


@router.post(
    "/{role_id}/permissions",
    summary="为角色挂载权限",
    description="幂等：已挂载时直接返回已有关联，状态码同样为 201。",
    status_code=status.HTTP_201_CREATED,
    response_model=RolePermissionData,
    responses={**_GUARDED_ITEM, 400: {"model": ErrorResponse}},
)
def attach_role_permission(
    payload: RolePermissionAttachRequest,
    role_id: str = Path(..., description="角色 ID。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    db: Session = Depends(get_db),
):
    role = _authorized_role(auth, store, Action.UPDATE, role_id)
    result = administration.attach_role_permission(store, role.id, payload.permission_id)
    db.commit()
    return RolePermissionData.model_validate(result.row)


@router.delete(
    "/{role_id}/permissions",
    summary="从角色移除权限",
    description="关联不存在时返回 404。",
    status_code=status.HTTP_200_OK,
    response_model=OperationResult,
    responses={**_GUARDED_ITEM, 400: {"model": ErrorResponse}},
)
def detach_role_permission(
    role_id: str = Path(..., description="角色 ID。"),
    permission_id: str | None = Query(default=None, alias="permissionId", description="权限 ID。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    db: Session = Depends(get_db),
):
    role = _authorized_role(auth, store, Action.UPDATE, role_id)
    administration.detach_role_permission(store, role.id, permission_id)
    db.commit()
    return {"success": True}
