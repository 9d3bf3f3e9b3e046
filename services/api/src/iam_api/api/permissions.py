"""权限管理接口。

每个接口先通过守卫校验 `Permission` 资源上的对应动作，
未认证返回 401，无权限返回 403，两者不混用。
"""

from fastapi import APIRouter, Depends, Path, Query, Request, status
from sqlalchemy.orm import Session

from iam_api.core.config import Settings, get_settings
from iam_api.db.session import get_db
from iam_api.dependencies import get_authorization, get_fact_store, require_identity
from iam_api.schemas.common import ErrorResponse, OperationResult, SuccessResponse
from iam_api.schemas.permission import PermissionCreateRequest, PermissionData, PermissionUpdateRequest
from iam_api.services import administration
from iam_api.services.fact_store import FactStore, PermissionFilter
from iam_api.services.guard import RequestAuthorization
from iam_api.services.vocabulary import Action, RequiredRule, Subject
from iam_api.utils.response import list_success

router = APIRouter(prefix="/permissions", tags=["permissions"], dependencies=[Depends(require_identity)])

_GUARDED = {401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}}


def _serialize(permission) -> PermissionData:
    return PermissionData.model_validate(permission)


@router.get(
    "",
    summary="查询权限列表",
    description="按名称/slug/资源/动作做忽略大小写的子串过滤，按 (resource, action) 升序，最多返回 500 条。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[list[PermissionData]],
    responses=_GUARDED,
)
def list_permissions(
    request: Request,
    q: str | None = Query(default=None, description="匹配名称、slug、资源或动作。"),
    resource: str | None = Query(default=None, description="按资源过滤。"),
    action: str | None = Query(default=None, description="按动作过滤。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    settings: Settings = Depends(get_settings),
):
    """返回过滤后的权限列表。"""
    auth.require(RequiredRule(Action.READ, Subject.PERMISSION))
    permissions = administration.list_permissions(
        store,
        PermissionFilter(q=q, resource=resource, action=action),
        limit=settings.permission_list_limit,
    )
    return list_success(request, [_serialize(permission) for permission in permissions])


@router.post(
    "",
    summary="创建权限",
    description="name、slug、resource、action 必填；slug 重复返回 409。",
    status_code=status.HTTP_201_CREATED,
    response_model=PermissionData,
    responses={**_GUARDED, 400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def create_permission(
    payload: PermissionCreateRequest,
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    db: Session = Depends(get_db),
):
    """创建权限并返回创建结果。"""
    auth.require(RequiredRule(Action.CREATE, Subject.PERMISSION))
    permission = administration.create_permission(store, payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(permission)
    return _serialize(permission)


@router.get(
    "/{permission_id}",
    summary="查询权限详情",
    status_code=status.HTTP_200_OK,
    response_model=PermissionData,
    responses={**_GUARDED, 404: {"model": ErrorResponse}},
)
def get_permission(
    permission_id: str = Path(..., description="权限 ID。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
):
    auth.require(RequiredRule(Action.READ, Subject.PERMISSION))
    return _serialize(administration.get_permission(store, permission_id))


@router.patch(
    "/{permission_id}",
    summary="更新权限",
    description="仅修改请求中出现的字段；修改 slug 时校验唯一性。",
    status_code=status.HTTP_200_OK,
    response_model=PermissionData,
    responses={**_GUARDED, 400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def update_permission(
    payload: PermissionUpdateRequest,
    permission_id: str = Path(..., description="权限 ID。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    db: Session = Depends(get_db),
):
    auth.require(RequiredRule(Action.UPDATE, Subject.PERMISSION))
    permission = administration.update_permission(store, permission_id, payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(permission)
    return _serialize(permission)


@router.delete(
    "/{permission_id}",
    summary="删除权限",
    description="同时清理角色关联与用户覆盖；系统内置权限返回 409。",
    status_code=status.HTTP_200_OK,
    response_model=OperationResult,
    responses={**_GUARDED, 404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def delete_permission(
    permission_id: str = Path(..., description="权限 ID。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    db: Session = Depends(get_db),
):
    auth.require(RequiredRule(Action.DELETE, Subject.PERMISSION))
    administration.delete_permission(store, permission_id)
    db.commit()
    return {"success": True}
