"""资源策略判定（拒绝优先）。

策略叠加在角色权限之上：角色判定放行后，只要存在一条生效的 deny 策略
命中当前身份上下文，请求仍然被拒绝。策略条件只认 tenantId / userId，
出现其他键时该策略不生效。
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from iam_api.core.logging import get_logger
from iam_api.models.policy import POLICY_EFFECT_DENY, ResourcePolicy
from iam_api.services.vocabulary import BindingContext, Subject, parse_subject

logger = get_logger("policies")

POLICY_DENIED_MESSAGE = "Access denied by policy"

_CONTEXT_KEYS = ("tenantId", "userId")


@dataclass(frozen=True)
class PolicyDenial:
    """命中当前身份的 deny 策略。"""

    policy_id: str
    name: str
    subject: Subject
    priority: int

    def covers(self, subject: Subject) -> bool:
        return self.subject.is_wildcard or self.subject == subject

    def to_payload(self) -> dict[str, Any]:
        return {"policyId": self.policy_id, "name": self.name, "subject": self.subject.value}


def interpolate(value: Any, ctx: BindingContext) -> Any:
    """替换条件中的上下文占位符。"""
    if isinstance(value, str):
        return (
            value.replace("${ctx.userId}", ctx.subject_id or "")
            .replace("${ctx.tenantId}", ctx.tenant_id or "")
            .replace("${publicTenantId}", ctx.public_tenant_id)
        )
    if isinstance(value, dict):
        return {key: interpolate(item, ctx) for key, item in value.items()}
    if isinstance(value, list):
        return [interpolate(item, ctx) for item in value]
    return value


def _context_matches(expected: Any, actual: str | None) -> bool:
    if not actual:
        return False
    if isinstance(expected, str):
        return expected == actual
    if isinstance(expected, dict) and isinstance(expected.get("in"), list):
        return actual in expected["in"]
    return False


def matches_context(conditions: Any, ctx: BindingContext) -> bool:
    """条件是否只引用身份上下文且全部命中；空条件视为命中所有人。"""
    if not isinstance(conditions, dict):
        return False
    actual = {"tenantId": ctx.tenant_id, "userId": ctx.subject_id}
    for key, expected in conditions.items():
        if key not in _CONTEXT_KEYS:
            return False
        if not _context_matches(expected, actual[key]):
            return False
    return True


def deny_policies(policies: Iterable[ResourcePolicy], ctx: BindingContext) -> tuple[PolicyDenial, ...]:
    """挑出对当前身份生效的 deny 策略，保持优先级顺序。"""
    denials: list[PolicyDenial] = []
    for policy in policies:
        if not policy.is_active or policy.effect != POLICY_EFFECT_DENY:
            continue
        subject = parse_subject(policy.resource)
        if subject is None:
            logger.debug("policy %s targets unknown resource %s; ignored", policy.id, policy.resource)
            continue
        if matches_context(interpolate(policy.conditions or {}, ctx), ctx):
            denials.append(
                PolicyDenial(policy_id=str(policy.id), name=policy.name, subject=subject, priority=policy.priority)
            )
    return tuple(denials)
