"""鉴权词汇：动作、资源、条件谓词与规则定义。

动作与资源都是封闭集合，各带一个显式通配成员（MANAGE / ALL）；
条件谓词使用带标签的数据类而不是任意字典，匹配逻辑可穷举。
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Union

from iam_api.core.security import IdentityContext

WILDCARD_TOKEN = "*"


class Action(StrEnum):
    """动作集合。"""

    MANAGE = "manage"  # 通配：匹配任意动作。
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    PUBLISH = "publish"
    APPROVE = "approve"
    ASSIGN = "assign"
    GRADE = "grade"
    REMIX = "remix"
    EXPORT = "export"

    @classmethod
    def _missing_(cls, value: object) -> "Action | None":
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized == WILDCARD_TOKEN:
                return cls.MANAGE
            for member in cls:
                if member.value == normalized:
                    return member
        return None

    @property
    def is_wildcard(self) -> bool:
        return self is Action.MANAGE


class Subject(StrEnum):
    """资源集合。"""

    ALL = "all"  # 通配：匹配任意资源。
    TENANT = "Tenant"
    USER = "User"
    ROLE = "Role"
    PERMISSION = "Permission"
    RESOURCE_POLICY = "ResourcePolicy"
    COURSE = "Course"
    UNIT = "Unit"
    LESSON = "Lesson"
    STORY = "Story"
    STORY_VERSION = "StoryVersion"
    CLOZE_CONFIG = "ClozeConfig"
    AUDIO_ASSET = "AudioAsset"
    AUDIO = "Audio"
    EXERCISE = "Exercise"
    QUESTION = "Question"
    CHOICE = "Choice"
    QUIZ = "Quiz"
    QUIZ_RESULT = "QuizResult"
    TAG = "Tag"
    REMIX_JOB = "RemixJob"
    USER_PROGRESS = "UserProgress"
    APPROVAL = "Approval"

    @classmethod
    def _missing_(cls, value: object) -> "Subject | None":
        # 权限表中的 resource 大小写不统一（如 `lesson`），按忽略大小写匹配。
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized == WILDCARD_TOKEN:
                return cls.ALL
            for member in cls:
                if member.value.lower() == normalized:
                    return member
        return None

    @property
    def is_wildcard(self) -> bool:
        return self is Subject.ALL


def parse_action(value: str) -> Action | None:
    """解析动作，不在集合内时返回 None。"""
    try:
        return Action(value)
    except ValueError:
        return None


def parse_subject(value: str) -> Subject | None:
    """解析资源，不在集合内时返回 None。"""
    try:
        return Subject(value)
    except ValueError:
        return None


class ContextValue(StrEnum):
    """条件中引用的身份值，在能力解析时绑定为具体值。"""

    SUBJECT_ID = "subject_id"
    TENANT_ID = "tenant_id"
    PUBLIC_TENANT = "public_tenant"


@dataclass(frozen=True)
class BindingContext:
    """条件绑定所需的身份值。"""

    subject_id: str
    tenant_id: str | None
    public_tenant_id: str

    @classmethod
    def for_identity(cls, identity: IdentityContext, *, tenant_scope: str | None, public_tenant_id: str):
        return cls(subject_id=identity.subject_id, tenant_id=tenant_scope, public_tenant_id=public_tenant_id)

    def lookup(self, ref: ContextValue) -> str | None:
        if ref is ContextValue.SUBJECT_ID:
            return self.subject_id
        if ref is ContextValue.TENANT_ID:
            return self.tenant_id
        return self.public_tenant_id


def _bind_value(value: Any, ctx: BindingContext) -> Any:
    if isinstance(value, ContextValue):
        return ctx.lookup(value)
    return value


def _normalize(value: Any) -> Any:
    # 记录中的 UUID 等对象与条件中的字符串比较时统一转为字符串。
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


@dataclass(frozen=True)
class Equals:
    """字段等值谓词。"""

    field: str
    value: Any

    def bind(self, ctx: BindingContext) -> "Equals":
        return Equals(self.field, _bind_value(self.value, ctx))

    def evaluate(self, target: dict[str, Any]) -> bool:
        if self.field not in target or self.value is None:
            return False
        return _normalize(target[self.field]) == _normalize(self.value)


@dataclass(frozen=True)
class In:
    """字段成员谓词。"""

    field: str
    values: tuple[Any, ...]

    def bind(self, ctx: BindingContext) -> "In":
        return In(self.field, tuple(_bind_value(value, ctx) for value in self.values))

    def evaluate(self, target: dict[str, Any]) -> bool:
        if self.field not in target:
            return False
        candidates = {_normalize(value) for value in self.values if value is not None}
        return _normalize(target[self.field]) in candidates


Condition = Union[Equals, In]


@dataclass(frozen=True)
class Rule:
    """授权原子规则。"""

    action: Action
    subject: Subject
    conditions: tuple[Condition, ...] = ()
    fields: tuple[str, ...] = ()

    def bind(self, ctx: BindingContext) -> "Rule":
        """将条件中的身份引用替换为具体值。"""
        if not self.conditions:
            return self
        return Rule(
            action=self.action,
            subject=self.subject,
            conditions=tuple(condition.bind(ctx) for condition in self.conditions),
            fields=self.fields,
        )

    def covers(self, action: Action, subject: Subject) -> bool:
        """只比较动作与资源（含通配）。"""
        action_ok = self.action.is_wildcard or self.action == action
        subject_ok = self.subject.is_wildcard or self.subject == subject
        return action_ok and subject_ok

    def conditions_hold(self, target: dict[str, Any] | None) -> bool:
        """条件全部成立。

        未提供目标记录时按类型级判断处理：只要存在可能放行的规则即视为通过，
        记录级调用必须传入 target。
        """
        if not self.conditions or target is None:
            return True
        return all(condition.evaluate(target) for condition in self.conditions)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"action": self.action.value, "subject": self.subject.value}
        if self.conditions:
            payload["conditions"] = [_condition_payload(condition) for condition in self.conditions]
        if self.fields:
            payload["fields"] = list(self.fields)
        return payload


def _condition_payload(condition: Condition) -> dict[str, Any]:
    if isinstance(condition, Equals):
        return {"op": "eq", "field": condition.field, "value": _normalize(condition.value)}
    return {"op": "in", "field": condition.field, "values": [_normalize(value) for value in condition.values]}


@dataclass(frozen=True)
class RequiredRule:
    """调用方请求校验的动作 + 资源（可附带目标记录属性）。"""

    action: Action
    subject: Subject
    target: dict[str, Any] | None = field(default=None, compare=False)

    @classmethod
    def of(cls, action: str | Action, subject: str | Subject, target: dict[str, Any] | None = None):
        """按字符串构造，非法动作/资源抛出 ValueError。"""
        return cls(action=Action(action), subject=Subject(subject), target=target)

    def describe(self) -> str:
        return f"{self.action.value}:{self.subject.value}"
