"""异常分类与应用异常处理注册。

| 分类 | 状态码 |
| --- | --- |
| AuthenticationFailure | 401 |
| AuthorizationFailure | 403 |
| ValidationFailure | 400 |
| NotFound | 404 |
| ConflictFailure | 409 |
| 存储异常（SQLAlchemyError） | 500 |
"""

from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from iam_api.core.logging import get_logger
from iam_api.utils.response import DEFAULT_ERROR_MESSAGE, error_payload

logger = get_logger("errors")


class AuthzHTTPException(HTTPException):
    """带机器可读错误码的协议异常基类。"""

    status_code_default: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code_default: str = "HTTP_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(status_code=self.status_code_default, detail=message)
        self.code = code or self.code_default
        self.details = details or {}


class AuthenticationFailure(AuthzHTTPException):
    status_code_default = status.HTTP_401_UNAUTHORIZED
    code_default = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized", **kwargs) -> None:
        super().__init__(message, **kwargs)


class AuthorizationFailure(AuthzHTTPException):
    status_code_default = status.HTTP_403_FORBIDDEN
    code_default = "FORBIDDEN"

    def __init__(self, message: str = "Forbidden", **kwargs) -> None:
        super().__init__(message, **kwargs)


class ValidationFailure(AuthzHTTPException):
    status_code_default = status.HTTP_400_BAD_REQUEST
    code_default = "VALIDATION_ERROR"


class NotFound(AuthzHTTPException):
    status_code_default = status.HTTP_404_NOT_FOUND
    code_default = "NOT_FOUND"


class ConflictFailure(AuthzHTTPException):
    status_code_default = status.HTTP_409_CONFLICT
    code_default = "CONFLICT"


def _default_http_error_code(status_code: int) -> str:
    if status_code == status.HTTP_400_BAD_REQUEST:
        return "VALIDATION_ERROR"
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return "UNAUTHORIZED"
    if status_code == status.HTTP_403_FORBIDDEN:
        return "FORBIDDEN"
    if status_code == status.HTTP_404_NOT_FOUND:
        return "NOT_FOUND"
    if status_code == status.HTTP_409_CONFLICT:
        return "CONFLICT"
    return "HTTP_ERROR"


async def http_exception_handler(request: Request, exc: HTTPException):
    """将协议异常统一包装为标准错误结构。"""
    if isinstance(exc, AuthzHTTPException):
        code, details = exc.code, exc.details
    else:
        code, details = _default_http_error_code(exc.status_code), {}
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(request, code=code, message=message, details=details),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """请求体/参数校验错误按 400 返回。"""
    errors = [
        {
            "field": ".".join(str(item) for item in err.get("loc", []) if item != "body"),
            "message": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_payload(
            request,
            code="VALIDATION_ERROR",
            message="request validation failed",
            details={"errors": errors},
        ),
    )


async def store_exception_handler(request: Request, exc: SQLAlchemyError):
    """存储异常：记录上下文，响应中不暴露内部细节。"""
    logger.exception(
        "fact store failure method=%s path=%s request_id=%s",
        request.method,
        request.url.path,
        getattr(request.state, "request_id", None),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(request, code="STORE_ERROR", message=DEFAULT_ERROR_MESSAGE),
    )


async def unexpected_exception_handler(request: Request, exc: Exception):
    """处理未捕获异常，避免内部细节泄露。"""
    logger.exception(
        "unhandled error method=%s path=%s request_id=%s",
        request.method,
        request.url.path,
        getattr(request.state, "request_id", None),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(request, code="INTERNAL_ERROR", message=DEFAULT_ERROR_MESSAGE),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """集中注册异常处理器。"""
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(SQLAlchemyError)(store_exception_handler)
    app.exception_handler(Exception)(unexpected_exception_handler)
