"""服务层能力导出集合。"""

from iam_api.services.ability import Ability, permission_to_rule, resolve_ability
from iam_api.services.fact_store import FactStore, PermissionFilter, parse_uuid
from iam_api.services.guard import (
    FORBIDDEN_MESSAGE,
    NO_RULES_MESSAGE,
    UNAUTHORIZED_MESSAGE,
    GuardResult,
    RequestAuthorization,
    check_ability,
    evaluate,
    filter_fields,
)
from iam_api.services.policies import POLICY_DENIED_MESSAGE, PolicyDenial, deny_policies
from iam_api.services.role_definitions import DEFAULT_ROLE_RULES, SUPER_ADMIN_ROLE, builtin_role_rules
from iam_api.services.vocabulary import Action, ContextValue, Equals, In, RequiredRule, Rule, Subject

__all__ = [
    "Ability",
    "Action",
    "ContextValue",
    "DEFAULT_ROLE_RULES",
    "Equals",
    "FORBIDDEN_MESSAGE",
    "FactStore",
    "GuardResult",
    "In",
    "NO_RULES_MESSAGE",
    "POLICY_DENIED_MESSAGE",
    "PolicyDenial",
    "PermissionFilter",
    "RequestAuthorization",
    "RequiredRule",
    "Rule",
    "SUPER_ADMIN_ROLE",
    "Subject",
    "UNAUTHORIZED_MESSAGE",
    "builtin_role_rules",
    "check_ability",
    "deny_policies",
    "evaluate",
    "filter_fields",
    "parse_uuid",
    "permission_to_rule",
    "resolve_ability",
]
