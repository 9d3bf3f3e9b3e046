"""能力解析：把身份在某个租户范围内的角色与覆盖事实合成为有效规则集。

合成规则：
1. 角色来源 = 数据库角色分配（全局 + 当前租户） ∪ 令牌内嵌角色。
2. 角色权限与授予覆盖投影为允许规则。
3. 拒绝覆盖作为减法掩码，对任何来源的允许规则都生效（拒绝优先）。
4. 当前租户范围内生效的 deny 资源策略在守卫层额外拦截。
解析结果只在单个请求内复用，不做跨请求缓存。
"""

from dataclasses import dataclass
from typing import Any

from iam_api.core.logging import get_logger
from iam_api.core.security import IdentityContext
from iam_api.models.permission import Permission
from iam_api.services.fact_store import FactStore, parse_uuid
from iam_api.services.policies import PolicyDenial, deny_policies
from iam_api.services.role_definitions import builtin_role_rules
from iam_api.services.vocabulary import BindingContext, RequiredRule, Rule, parse_action, parse_subject

logger = get_logger("ability")

_IDENTITY_SCOPE = object()


@dataclass(frozen=True)
class Ability:
    """单个身份在单个租户范围内的有效能力。"""

    identity: IdentityContext
    tenant_scope: str | None
    rules: tuple[Rule, ...]
    denied: tuple[Rule, ...] = ()
    policy_denials: tuple[PolicyDenial, ...] = ()

    def is_denied(self, required: RequiredRule) -> bool:
        return any(deny.covers(required.action, required.subject) for deny in self.denied)

    def policy_denial(self, required: RequiredRule) -> PolicyDenial | None:
        """返回拦截该资源的第一条 deny 策略（按优先级）。"""
        return next((denial for denial in self.policy_denials if denial.covers(required.subject)), None)

    def matching_rules(self, required: RequiredRule) -> list[Rule]:
        """返回放行该校验的规则；被拒绝覆盖命中时恒为空。"""
        if self.is_denied(required):
            return []
        return [
            rule
            for rule in self.rules
            if rule.covers(required.action, required.subject) and rule.conditions_hold(required.target)
        ]

    def can(self, required: RequiredRule) -> bool:
        return bool(self.matching_rules(required))

    @property
    def effective_rules(self) -> tuple[Rule, ...]:
        """扣除被拒绝覆盖掩盖后的允许规则。"""
        return tuple(
            rule
            for rule in self.rules
            if not any(deny.covers(rule.action, rule.subject) for deny in self.denied)
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "subject_id": self.identity.subject_id,
            "tenant_id": self.tenant_scope,
            "role_ids": list(self.identity.role_ids),
            "rules": [rule.to_payload() for rule in self.effective_rules],
            "denied": [rule.to_payload() for rule in self.denied],
            "policy_denials": [denial.to_payload() for denial in self.policy_denials],
        }


def permission_to_rule(permission: Permission) -> Rule | None:
    """把权限行投影为规则；动作或资源不在词汇表内时返回 None。"""
    action = parse_action(permission.action)
    subject = parse_subject(permission.resource)
    if action is None or subject is None:
        logger.debug(
            "permission %s (%s:%s) is outside the access vocabulary; ignored",
            permission.slug,
            permission.resource,
            permission.action,
        )
        return None
    return Rule(action=action, subject=subject)


def _dedupe(rules: list[Rule]) -> tuple[Rule, ...]:
    return tuple(dict.fromkeys(rules))


def resolve_ability(
    identity: IdentityContext,
    store: FactStore,
    tenant_scope: Any = _IDENTITY_SCOPE,
    *,
    public_tenant_id: str = "public",
) -> Ability:
    """解析身份的有效能力。

    tenant_scope 缺省取身份自带的租户；显式传 None 表示只看全局事实。
    """
    scope: str | None = identity.tenant_id if tenant_scope is _IDENTITY_SCOPE else tenant_scope
    user_id = parse_uuid(identity.subject_id)

    assignments = store.find_role_assignments(user_id, scope) if user_id is not None else []
    role_keys = {str(assignment.role_id) for assignment in assignments} | set(identity.role_ids)
    roles = store.find_roles(role_keys)
    known_keys = {str(role.id) for role in roles} | {role.slug for role in roles}

    allowed: list[Rule] = []
    for permissions in store.permissions_for_roles(role.id for role in roles).values():
        allowed.extend(rule for permission in permissions if (rule := permission_to_rule(permission)) is not None)

    # 令牌角色在角色表中不存在时，回退内置定义。
    for role_key in identity.role_ids:
        if role_key not in known_keys:
            allowed.extend(builtin_role_rules(role_key, tenant_scope=scope))

    overrides = store.find_permission_overrides(user_id, scope) if user_id is not None else []
    override_permissions = store.permissions_by_ids(override.permission_id for override in overrides)
    denied: list[Rule] = []
    for override in overrides:
        permission = override_permissions.get(override.permission_id)
        if permission is None:
            continue
        rule = permission_to_rule(permission)
        if rule is None:
            continue
        (allowed if override.granted else denied).append(rule)

    binding = BindingContext.for_identity(identity, tenant_scope=scope, public_tenant_id=public_tenant_id)
    ability = Ability(
        identity=identity,
        tenant_scope=scope,
        rules=_dedupe([rule.bind(binding) for rule in allowed]),
        denied=_dedupe(denied),
        policy_denials=deny_policies(store.find_active_policies(scope), binding),
    )
    logger.debug(
        "resolved ability subject=%s tenant=%s roles=%d rules=%d denied=%d policies=%d",
        identity.subject_id,
        scope,
        len(roles),
        len(ability.rules),
        len(ability.denied),
        len(ability.policy_denials),
    )
    return ability
