"""FastAPI 应用入口点。"""

from fastapi import FastAPI

from iam_api.api.router import api_router
from iam_api.core.config import get_settings
from iam_api.core.logging import setup_logging
from iam_api.exceptions import register_exception_handlers
from iam_api.middlewares import register_middlewares

settings = get_settings()


def create_app() -> FastAPI:
    """创建并配置 FastAPI 应用实例。"""
    setup_logging(settings)
    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        debug=settings.app_debug,
        description=(
            "多租户学习平台鉴权服务。\n\n"
            "列表接口统一返回：`{data, success, meta}`；错误统一返回：`{error, code, request_id}`。\n"
            "通过 Bearer 令牌（或 Cookie 回退）进行认证，未认证返回 401，无权限返回 403。\n"
            "租户上下文：使用访问令牌中的 `tenantId`。"
        ),
        openapi_tags=[
            {"name": "health", "description": "服务存活与就绪探针。"},
            {"name": "me", "description": "当前身份的有效能力查询。"},
            {"name": "permissions", "description": "权限点维护（创建、查询、更新、删除）。"},
            {"name": "policies", "description": "资源策略维护（deny 策略叠加在角色权限之上）。"},
            {"name": "roles", "description": "角色定义与角色权限维护。"},
            {"name": "users", "description": "用户角色分配与权限覆盖（授予/拒绝）。"},
        ],
    )

    register_middlewares(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
