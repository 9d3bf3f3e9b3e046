"""统一响应结构工具。"""

from typing import Any

from fastapi import Request

DEFAULT_ERROR_MESSAGE = "internal server error"


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def success(request: Request, data: Any, meta: dict[str, Any] | None = None) -> dict[str, Any]:
    """构造统一成功响应结构。"""
    final_meta: dict[str, Any] = {"request_id": _request_id(request)}
    if meta:
        final_meta.update(meta)
    return {"data": data, "success": True, "meta": final_meta}


def list_success(request: Request, items: list[Any]) -> dict[str, Any]:
    """列表响应，meta.total 为本次返回条数。"""
    return success(request, items, {"total": len(items)})


def error_payload(
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """构造统一错误响应结构，error 字段始终为可读字符串。"""
    payload: dict[str, Any] = {
        "error": message,
        "code": code,
        "request_id": _request_id(request),
    }
    if details:
        payload["details"] = details
    return payload
