"""资源策略管理接口。"""

from fastapi import APIRouter, Depends, Path, Query, Request, status
from sqlalchemy.orm import Session

from iam_api.core.config import Settings, get_settings
from iam_api.db.session import get_db
from iam_api.dependencies import get_authorization, get_fact_store, require_identity
from iam_api.models.policy import ResourcePolicy
from iam_api.schemas.common import ErrorResponse, OperationResult, SuccessResponse
from iam_api.schemas.policy import PolicyCreateRequest, PolicyData, PolicyUpdateRequest
from iam_api.services import administration
from iam_api.services.fact_store import FactStore
from iam_api.services.guard import RequestAuthorization
from iam_api.services.vocabulary import Action, RequiredRule, Subject
from iam_api.utils.response import list_success

router = APIRouter(prefix="/policies", tags=["policies"], dependencies=[Depends(require_identity)])

_GUARDED = {401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}}
_GUARDED_ITEM = {**_GUARDED, 404: {"model": ErrorResponse}}


def _scoped(action: Action, tenant_id: str | None) -> RequiredRule:
    return RequiredRule(action, Subject.RESOURCE_POLICY, target={"tenantId": tenant_id})


def _authorized_policy(auth: RequestAuthorization, store: FactStore, action: Action, policy_id: str) -> ResourcePolicy:
    auth.require(RequiredRule(action, Subject.RESOURCE_POLICY))
    policy = administration.get_policy(store, policy_id)
    auth.require(_scoped(action, policy.tenant_id))
    return policy


@router.get(
    "",
    summary="查询资源策略",
    description="按优先级倒序、创建时间倒序返回，单次最多返回配置的上限条数。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[list[PolicyData]],
    responses=_GUARDED,
)
def list_policies(
    request: Request,
    resource: str | None = Query(default=None, description="按资源类型过滤。"),
    tenant_id: str | None = Query(default=None, alias="tenantId", description="按租户过滤。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    settings: Settings = Depends(get_settings),
):
    auth.require(RequiredRule(Action.READ, Subject.RESOURCE_POLICY))
    policies = administration.list_policies(
        store,
        resource=resource,
        tenant_id=tenant_id,
        limit=settings.policy_list_limit,
    )
    return list_success(request, [PolicyData.model_validate(policy) for policy in policies])


@router.post(
    "",
    summary="创建资源策略",
    description="name、resource、effect 必填；effect 只接受 allow / deny。",
    status_code=status.HTTP_201_CREATED,
    response_model=PolicyData,
    responses={**_GUARDED, 400: {"model": ErrorResponse}},
)
def create_policy(
    payload: PolicyCreateRequest,
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    db: Session = Depends(get_db),
):
    default_tenant = auth.identity.tenant_id if auth.identity else None
    tenant_id = administration.normalize_tenant(payload.tenant_id) or default_tenant
    auth.require(_scoped(Action.CREATE, tenant_id))
    policy = administration.create_policy(store, payload.model_dump(exclude_unset=True), default_tenant_id=default_tenant)
    db.commit()
    db.refresh(policy)
    return PolicyData.model_validate(policy)


@router.get(
    "/{policy_id}",
    summary="查询资源策略详情",
    status_code=status.HTTP_200_OK,
    response_model=PolicyData,
    responses=_GUARDED_ITEM,
)
def get_policy(
    policy_id: str = Path(..., description="策略 ID。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
):
    return PolicyData.model_validate(_authorized_policy(auth, store, Action.READ, policy_id))


@router.put(
    "/{policy_id}",
    summary="更新资源策略",
    description="仅修改请求中出现的字段；tenantId 显式置空表示改为全局策略。",
    status_code=status.HTTP_200_OK,
    response_model=PolicyData,
    responses={**_GUARDED_ITEM, 400: {"model": ErrorResponse}},
)
def update_policy(
    payload: PolicyUpdateRequest,
    policy_id: str = Path(..., description="策略 ID。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    db: Session = Depends(get_db),
):
    policy = _authorized_policy(auth, store, Action.UPDATE, policy_id)
    changes = payload.model_dump(exclude_unset=True)
    if "tenant_id" in changes:
        auth.require(_scoped(Action.UPDATE, administration.normalize_tenant(changes["tenant_id"])))
    policy = administration.update_policy(store, policy.id, changes)
    db.commit()
    db.refresh(policy)
    return PolicyData.model_validate(policy)


@router.delete(
    "/{policy_id}",
    summary="删除资源策略",
    status_code=status.HTTP_200_OK,
    response_model=OperationResult,
    responses=_GUARDED_ITEM,
)
def delete_policy(
    policy_id: str = Path(..., description="策略 ID。"),
    auth: RequestAuthorization = Depends(get_authorization),
    store: FactStore = Depends(get_fact_store),
    db: Session = Depends(get_db),
):
    policy = _authorized_policy(auth, store, Action.DELETE, policy_id)
    administration.delete_policy(store, policy.id)
    db.commit()
    return {"success": True}
