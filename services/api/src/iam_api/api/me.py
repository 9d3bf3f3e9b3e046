"""当前身份能力查询接口（给前端渲染使用，无副作用）。"""

from fastapi import APIRouter, Depends, Request, status

from iam_api.dependencies import get_authorization
from iam_api.schemas.common import ErrorResponse, SuccessResponse
from iam_api.schemas.responses import AbilityData
from iam_api.services.guard import RequestAuthorization
from iam_api.utils.response import success

router = APIRouter(prefix="/me", tags=["me"])


@router.get(
    "/ability",
    summary="查询当前有效能力",
    description="返回令牌身份在令牌租户范围内的有效规则与显式拒绝；任何已认证身份都可读取自己的能力。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AbilityData],
    responses={401: {"model": ErrorResponse}},
)
def get_my_ability(request: Request, auth: RequestAuthorization = Depends(get_authorization)):
    """未认证时返回 401。"""
    return success(request, AbilityData.model_validate(auth.ability().to_payload()))
