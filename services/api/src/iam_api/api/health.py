"""健康检查接口。"""

from sqlalchemy import text
from sqlalchemy.orm import Session

from fastapi import APIRouter, Depends, Request, status

from iam_api.db.session import get_db
from iam_api.utils.response import success
from iam_api.schemas.common import ErrorResponse, SuccessResponse
from iam_api.schemas.responses import HealthStatusData

router = APIRouter(prefix="/health", tags=["health"])


@router.get(
    "/live",
    summary="存活探针",
    description="用于容器编排系统检测服务进程是否存活，不需要认证。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    responses={500: {"model": ErrorResponse}},
)
def live(request: Request):
    """仅表示进程存活，不校验外部依赖。"""
    return success(request, {"status": "ok"})


@router.get(
    "/ready",
    summary="就绪探针",
    description="通过事实存储连通性检测服务是否具备鉴权能力。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    responses={500: {"model": ErrorResponse}},
)
def ready(request: Request, db: Session = Depends(get_db)):
    """数据库不可用时由存储异常处理器返回 500。"""
    db.execute(text("select 1"))
    return success(request, {"status": "ready"})
