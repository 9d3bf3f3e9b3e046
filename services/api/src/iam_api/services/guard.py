"""鉴权守卫。

对一组必需规则做合取判定：全部命中才放行。
角色判定放行后再叠加资源策略：命中 deny 策略时仍然拒绝。
能力解析只在请求内做一次，后续判定都是纯内存计算。
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from iam_api.core.config import Settings
from iam_api.core.logging import get_logger
from iam_api.core.security import IdentityContext
from iam_api.exceptions import AuthenticationFailure, AuthorizationFailure
from iam_api.services.ability import Ability, resolve_ability
from iam_api.services.fact_store import FactStore
from iam_api.services.policies import POLICY_DENIED_MESSAGE
from iam_api.services.vocabulary import RequiredRule

logger = get_logger("guard")

UNAUTHORIZED_MESSAGE = "Unauthorized"
FORBIDDEN_MESSAGE = "Forbidden"
NO_RULES_MESSAGE = "No authorization rules provided"


@dataclass
class GuardResult:
    """守卫判定结果。"""

    allowed: bool
    error: str | None = None
    # 放行时命中规则携带的字段白名单，响应字段过滤由调用方负责。
    restricted_fields: list[str] | None = None
    failed_rules: list[RequiredRule] = field(default_factory=list)

    @property
    def is_authentication_failure(self) -> bool:
        return not self.allowed and self.error == UNAUTHORIZED_MESSAGE


def _restricted_fields(ability: Ability, rules: Sequence[RequiredRule]) -> list[str] | None:
    """汇总命中规则上的字段限制。

    同一条必需规则只要有一条无字段限制的规则命中，即视为不受限。
    """
    collected: set[str] = set()
    for required in rules:
        matches = ability.matching_rules(required)
        if any(not rule.fields for rule in matches):
            continue
        for rule in matches:
            collected.update(rule.fields)
    return sorted(collected) or None


def check_ability(
    ability: Ability,
    required_rules: Sequence[RequiredRule],
    *,
    message: str | None = None,
    log_checks: bool = False,
) -> GuardResult:
    """对已解析的能力执行判定（不访问存储）。"""
    if not required_rules:
        return GuardResult(allowed=False, error=NO_RULES_MESSAGE)

    failed = [required for required in required_rules if not ability.can(required)]
    identity = ability.identity
    if log_checks:
        logger.info(
            "authorization check subject=%s tenant=%s rules=%s allowed=%s",
            identity.subject_id,
            ability.tenant_scope or "-",
            ",".join(required.describe() for required in required_rules),
            not failed,
        )
    if failed:
        for required in failed:
            logger.warning(
                "forbidden subject=%s tenant=%s action=%s subject_type=%s denied_by_override=%s",
                identity.subject_id,
                ability.tenant_scope or "-",
                required.action.value,
                required.subject.value,
                ability.is_denied(required),
            )
        return GuardResult(allowed=False, error=message or FORBIDDEN_MESSAGE, failed_rules=failed)

    for required in required_rules:
        denial = ability.policy_denial(required)
        if denial is not None:
            logger.warning(
                "denied by policy subject=%s tenant=%s policy=%s subject_type=%s",
                identity.subject_id,
                ability.tenant_scope or "-",
                denial.policy_id,
                required.subject.value,
            )
            return GuardResult(allowed=False, error=POLICY_DENIED_MESSAGE, failed_rules=list(required_rules))

    return GuardResult(allowed=True, restricted_fields=_restricted_fields(ability, required_rules))


def evaluate(
    required_rules: Sequence[RequiredRule],
    identity: IdentityContext | None,
    *,
    store: FactStore | None = None,
    ability: Ability | None = None,
    settings: Settings | None = None,
    message: str | None = None,
) -> GuardResult:
    """判定身份是否满足全部必需规则。

    身份为空时返回认证失败（Unauthorized），调用方应映射为 401；
    其余失败为授权失败（Forbidden），映射为 403。
    """
    if identity is None:
        return GuardResult(allowed=False, error=UNAUTHORIZED_MESSAGE, failed_rules=list(required_rules))

    if ability is None:
        if store is None:
            raise ValueError("either ability or store is required")
        public_tenant_id = settings.public_tenant_id if settings else "public"
        ability = resolve_ability(identity, store, public_tenant_id=public_tenant_id)

    return check_ability(
        ability,
        required_rules,
        message=message,
        log_checks=bool(settings and settings.auth_log_checks),
    )


def filter_fields(payload: dict[str, Any], restricted_fields: Iterable[str] | None) -> dict[str, Any]:
    """按字段白名单裁剪响应数据；无限制时原样返回。"""
    if restricted_fields is None:
        return payload
    allowed = set(restricted_fields)
    return {key: value for key, value in payload.items() if key in allowed}


class RequestAuthorization:
    """请求级鉴权上下文：持有身份与存储，能力最多解析一次。"""

    def __init__(self, identity: IdentityContext | None, store: FactStore, settings: Settings) -> None:
        self.identity = identity
        self.store = store
        self.settings = settings
        self._ability: Ability | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None

    def ability(self) -> Ability:
        """返回本请求的能力（首次调用时解析）。"""
        if not self.is_authenticated:
            raise AuthenticationFailure()
        if self._ability is None:
            self._ability = resolve_ability(
                self.identity,
                self.store,
                public_tenant_id=self.settings.public_tenant_id,
            )
        return self._ability

    def check(self, *required_rules: RequiredRule, message: str | None = None) -> GuardResult:
        if not self.is_authenticated:
            return evaluate(required_rules, None)
        return evaluate(required_rules, self.identity, ability=self.ability(), settings=self.settings, message=message)

    def require(self, *required_rules: RequiredRule, message: str | None = None) -> GuardResult:
        """判定失败时抛出 401/403 异常，成功返回判定结果。"""
        result = self.check(*required_rules, message=message)
        if result.allowed:
            return result
        if not self.is_authenticated:
            raise AuthenticationFailure(result.error or UNAUTHORIZED_MESSAGE)
        raise AuthorizationFailure(result.error or FORBIDDEN_MESSAGE)
