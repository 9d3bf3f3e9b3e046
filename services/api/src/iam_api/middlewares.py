"""应用中间件注册。"""

from time import perf_counter
import uuid

from fastapi import FastAPI, Request

REQUEST_ID_HEADER = "X-Request-Id"


async def request_id_middleware(request: Request, call_next):
    """注入请求追踪 ID；上游已带合法 ID 时沿用。"""
    incoming = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    request.state.request_id = incoming if 0 < len(incoming) <= 128 else str(uuid.uuid4())
    started_at = perf_counter()
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request.state.request_id
    response.headers["X-Process-Time-Ms"] = str(round((perf_counter() - started_at) * 1000, 2))
    return response


def register_middlewares(app: FastAPI) -> None:
    """集中注册中间件。"""
    app.middleware("http")(request_id_middleware)
