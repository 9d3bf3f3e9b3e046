"""身份解析与令牌校验工具。

从 Authorization 头（或回退 Cookie）中取出 Bearer 令牌，校验签名与有效期后
映射为只在本次请求内存在的身份上下文。任何校验失败统一返回 None，
不向调用方区分失败原因。
"""

from dataclasses import dataclass, field
from http.cookies import CookieError, SimpleCookie
import re
from typing import Any
from urllib.parse import unquote

import jwt
from jwt import InvalidTokenError

from iam_api.core.config import Settings
from iam_api.core.logging import get_logger

logger = get_logger("security")

_BEARER_PATTERN = re.compile(r"Bearer\s+([^,\s]+)", flags=re.IGNORECASE)


@dataclass(frozen=True)
class IdentityContext:
    """请求级身份上下文，不落库。"""

    # 令牌中的用户 ID（userId 声明）。
    subject_id: str
    # 令牌携带的租户上下文，可为空。
    tenant_id: str | None = None
    # 令牌内嵌角色，仅作为快速路径提示。
    role_ids: tuple[str, ...] = field(default_factory=tuple)


def _is_placeholder_token(token: str) -> bool:
    return ("{{" in token and "}}" in token) or ("${" in token and "}" in token)


def extract_bearer_token(authorization: str | None) -> str | None:
    """从认证头提取 Bearer 令牌，兼容重复头被逗号拼接的场景。"""
    if not authorization:
        return None
    for candidate in reversed(_BEARER_PATTERN.findall(authorization)):
        token = candidate.strip()
        # 联调工具未替换的变量占位符不是令牌。
        if token and not _is_placeholder_token(token):
            return token
    return None


def extract_cookie_token(cookie_header: str | None, cookie_name: str) -> str | None:
    """从 Cookie 头读取令牌。"""
    if not cookie_header:
        return None
    jar = SimpleCookie()
    try:
        jar.load(cookie_header)
    except CookieError:
        return None
    morsel = jar.get(cookie_name)
    if morsel is None or not morsel.value:
        return None
    return unquote(morsel.value)


def _decode_jwt(token: str, settings: Settings) -> dict[str, Any]:
    """按固定算法校验签名与过期时间。"""
    return jwt.decode(
        token,
        key=settings.auth_jwt_secret,
        algorithms=[settings.auth_jwt_algorithm],
        leeway=settings.auth_jwt_leeway_seconds,
        options={"verify_signature": True, "verify_exp": True, "verify_aud": False},
    )


def _claims_to_identity(claims: dict[str, Any]) -> IdentityContext | None:
    subject = claims.get("userId")
    if not isinstance(subject, str) or not subject.strip():
        return None
    tenant_id = claims.get("tenantId")
    role = claims.get("role")
    return IdentityContext(
        subject_id=subject.strip(),
        tenant_id=(tenant_id.strip() or None) if isinstance(tenant_id, str) else None,
        role_ids=(role.strip(),) if isinstance(role, str) and role.strip() else (),
    )


def extract_identity(
    authorization: str | None,
    cookie_header: str | None,
    *,
    settings: Settings,
) -> IdentityContext | None:
    """解析请求身份。

    规则：
    1. 先读 Authorization 头，缺失时回退读取配置的 Cookie。
    2. 未配置签名密钥时直接失败（仅非生产环境输出告警）。
    3. 签名错误、过期、格式错误一律返回 None。
    """
    token = extract_bearer_token(authorization)
    if token is None:
        token = extract_cookie_token(cookie_header, settings.auth_cookie_name)
    if token is None:
        return None

    if not settings.auth_jwt_secret:
        if not settings.is_production:
            logger.warning(
                "auth_jwt_secret is not configured (env=%s); set IAM_AUTH_JWT_SECRET, all tokens are rejected",
                settings.app_env,
            )
        return None

    try:
        claims = _decode_jwt(token, settings)
    except InvalidTokenError as exc:
        logger.debug("token verification failed: %s", type(exc).__name__)
        return None

    return _claims_to_identity(claims)
