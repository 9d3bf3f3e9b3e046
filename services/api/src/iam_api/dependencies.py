"""请求上下文依赖。

职责:
1. 为每个请求提供事实存储适配器（共享请求会话）。
2. 从认证头或 Cookie 解析身份，失败时为 None，由守卫决定返回 401。
3. 生成请求级鉴权上下文，能力在同一请求内只解析一次。
4. 受保护路由在请求体校验之前先确认身份，未认证一律 401。
"""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from iam_api.core.config import Settings, get_settings
from iam_api.core.security import IdentityContext, extract_identity
from iam_api.db.session import get_db
from iam_api.exceptions import AuthenticationFailure
from iam_api.services.fact_store import FactStore
from iam_api.services.guard import RequestAuthorization

# 仅用于在线接口文档展示认证方式；令牌实际由 extract_identity 解析。
bearer_scheme = HTTPBearer(auto_error=False)


def get_fact_store(db: Session = Depends(get_db)) -> FactStore:
    """包装请求会话为事实存储。"""
    return FactStore(db)


def get_identity(
    request: Request,
    _credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> IdentityContext | None:
    """解析当前请求身份。"""
    return extract_identity(
        request.headers.get("authorization"),
        request.headers.get("cookie"),
        settings=settings,
    )


def require_identity(identity: IdentityContext | None = Depends(get_identity)) -> IdentityContext:
    """受保护路由的前置依赖：身份缺失时抛出 401。

    路由级依赖先于请求体校验执行，未认证请求不会因请求体格式错误得到 400。
    """
    if identity is None:
        raise AuthenticationFailure()
    return identity


def get_authorization(
    identity: IdentityContext | None = Depends(get_identity),
    store: FactStore = Depends(get_fact_store),
    settings: Settings = Depends(get_settings),
) -> RequestAuthorization:
    """构造请求级鉴权上下文。"""
    return RequestAuthorization(identity, store, settings)
