"""全局通用结构。

用于定义统一响应包裹结构，便于在线接口文档展示与联调。
对外字段统一使用 camelCase，入参同时接受 snake_case。
"""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class BaseSchema(BaseModel):
    """基础结构，开启对象映射能力与 camelCase 别名。"""

    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(BaseModel):
    """统一错误响应。"""

    error: str = Field(description="人类可读错误信息。")
    code: str = Field(description="机器可识别错误码。")
    request_id: str | None = Field(default=None, description="服务端生成的请求追踪 ID。")
    details: dict[str, Any] | None = Field(default=None, description="可选扩展错误细节。")


class OperationResult(BaseModel):
    """删除类接口的返回结构。"""

    success: bool = Field(default=True, description="操作是否成功。")


T = TypeVar("T")


class SuccessResponse(BaseModel, Generic[T]):
    """统一成功响应。"""

    data: T = Field(description="业务返回数据主体。")
    success: bool = Field(default=True, description="固定为 true。")
    meta: dict[str, Any] = Field(default_factory=dict, description="请求追踪 ID 与列表总数等元信息。")
