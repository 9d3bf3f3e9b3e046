"""用户角色分配与权限覆盖接口。

查询需要 `read User`，写入与撤销需要 `update User`。
校验时以操作涉及的租户范围作为目标记录，带租户条件的管理员只能管理本租户内的分配；
不带租户的操作（全局分配、跨租户查询）只有不受条件限制的规则能放行。
目标用户不存在返回 404，与 403 区分。
"""

from fastapi import APIRouter, Depends, Path, Query, Request, status
from sqlalchemy.orm import Session

from iam_api.db.session import get_db
from iam_api.dependencies import get_authorization, get_fact_store, require_identity
from iam_api.schemas.assignment import (
    PermissionOverrideData,
    PermissionOverrideRequest,
    RoleAssignmentData,
    RoleAssignRequest,
    UserPermissionItem,
    UserRoleItem,
)
from iam_api.schemas.common import ErrorResponse, OperationResult, SuccessResponse
from iam_api.schemas.permission import PermissionData, RoleData
from iam_api.services import administration
from iam_api.services.fact_store import FactStore
from iam_api.services.guard import RequestAuthorization
from iam_api.services.vocabulary import Action, RequiredRule, Subject
from iam_api.utils.response import list_success

router = APIRouter(prefix="/users", tags=["users"], dependencies=[Depends(require_identity)])

_GUARDED = {401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}


def _scoped(action: Action, tenant_id: str | None) -> RequiredRule:
    """以操作涉及的租户范围作为目标记录。"""
    return RequiredRule(action, Subject.USER, target={"tenantId": administration.normalize_tenant(tenant_id)})


def _user_role_item(assignment, role) -> UserRoleItem:
    return UserRoleItem(
        **RoleData.model_validate(role).model_dump(),
        assignment_id=assignment.id,
        tenant_id=assignment.tenant_id,
    )


def _user_permission_item(override, permission) -> UserPermissionItem:
    return UserPermissionItem(
        **PermissionData.model_validate(permission).model_dump(),
        override_id=override.id,
        tenant_id=override.tenant_id,
        granted=override.granted,
    )


# ---- 角色分配 ----


@router.get(
    "/{user_id}/roles",
    summary="查询用户角色",
    description="缺省返回全部范围的分配（含全局）；传 tenantId 时只返回该租户范围。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[list[UserRoleItem]],
    responses=_GUARDED,
)
def list_user_roles(
    request: Request,
    user_id: str = Path(..., description="用户 ID。"),
    tenant_id: str | None = Query(default=None, alias="tenantId", description="只看该租户范围。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
):
    auth.require(_scoped(Action.READ, tenant_id))
    rows = administration.list_user_roles(store, user_id, tenant_id)
    return list_success(request, [_user_role_item(assignment, role) for assignment, role in rows])


@router.post(
    "/{user_id}/roles",
    summary="分配角色",
    description="幂等：同一 (用户, 角色, 租户) 已存在时直接返回已有记录，状态码同样为 201。",
    status_code=status.HTTP_201_CREATED,
    response_model=RoleAssignmentData,
    responses={**_GUARDED, 400: {"model": ErrorResponse}},
)
def assign_role(
    payload: RoleAssignRequest,
    user_id: str = Path(..., description="用户 ID。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    db: Session = Depends(get_db),
):
    auth.require(_scoped(Action.UPDATE, payload.tenant_id))
    result = administration.assign_role(store, user_id, payload.role_id, payload.tenant_id)
    db.commit()
    return RoleAssignmentData.model_validate(result.row)


@router.delete(
    "/{user_id}/roles",
    summary="撤销角色",
    description="按 (roleId, tenantId) 精确撤销；分配不存在时返回 404。",
    status_code=status.HTTP_200_OK,
    response_model=OperationResult,
    responses={**_GUARDED, 400: {"model": ErrorResponse}},
)
def revoke_role(
    user_id: str = Path(..., description="用户 ID。"),
    role_id: str | None = Query(default=None, alias="roleId", description="角色 ID。"),
    tenant_id: str | None = Query(default=None, alias="tenantId", description="租户范围，缺省为全局。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    db: Session = Depends(get_db),
):
    auth.require(_scoped(Action.UPDATE, tenant_id))
    administration.revoke_role(store, user_id, role_id, tenant_id)
    db.commit()
    return {"success": True}


# ---- 权限覆盖 ----


@router.get(
    "/{user_id}/permissions",
    summary="查询用户权限覆盖",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[list[UserPermissionItem]],
    responses=_GUARDED,
)
def list_user_permissions(
    request: Request,
    user_id: str = Path(..., description="用户 ID。"),
    tenant_id: str | None = Query(default=None, alias="tenantId", description="只看该租户范围。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
):
    auth.require(_scoped(Action.READ, tenant_id))
    rows = administration.list_user_permissions(store, user_id, tenant_id)
    return list_success(request, [_user_permission_item(override, permission) for override, permission in rows])


@router.post(
    "/{user_id}/permissions",
    summary="写入权限覆盖",
    description="granted 缺省为 true；同一 (用户, 权限, 租户) 已存在时仅更新 granted。",
    status_code=status.HTTP_201_CREATED,
    response_model=PermissionOverrideData,
    responses={**_GUARDED, 400: {"model": ErrorResponse}},
)
def assign_permission_override(
    payload: PermissionOverrideRequest,
    user_id: str = Path(..., description="用户 ID。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    db: Session = Depends(get_db),
):
    auth.require(_scoped(Action.UPDATE, payload.tenant_id))
    result = administration.assign_permission_override(
        store,
        user_id,
        payload.permission_id,
        tenant_id=payload.tenant_id,
        granted=payload.granted,
    )
    db.commit()
    return PermissionOverrideData.model_validate(result.row)


@router.delete(
    "/{user_id}/permissions",
    summary="撤销权限覆盖",
    description="按 (permissionId, tenantId) 精确撤销；覆盖不存在时返回 404。",
    status_code=status.HTTP_200_OK,
    response_model=OperationResult,
    responses={**_GUARDED, 400: {"model": ErrorResponse}},
)
def revoke_permission_override(
    user_id: str = Path(..., description="用户 ID。"),
    permission_id: str | None = Query(default=None, alias="permissionId", description="权限 ID。"),
    tenant_id: str | None = Query(default=None, alias="tenantId", description="租户范围，缺省为全局。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    db: Session = Depends(get_db),
):
    auth.require(_scoped(Action.UPDATE, tenant_id))
    administration.revoke_permission_override(store, user_id, permission_id, tenant_id)
    db.commit()
    return {"success": True}
