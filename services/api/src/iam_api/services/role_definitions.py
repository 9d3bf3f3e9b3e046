"""内置角色规则（令牌角色快速路径）。

令牌 role 声明若在角色表中找不到对应角色，回退到这里的内置定义；
数据库中的角色定义始终优先。
"""

from iam_api.services.vocabulary import Action, ContextValue, Equals, In, Rule, Subject

SUPER_ADMIN_ROLE = "super_admin"

_SAME_TENANT = Equals("tenantId", ContextValue.TENANT_ID)
_OWNED = Equals("ownerId", ContextValue.SUBJECT_ID)
_SELF = Equals("userId", ContextValue.SUBJECT_ID)

_CONTENT = (Subject.COURSE, Subject.UNIT, Subject.LESSON, Subject.STORY, Subject.STORY_VERSION, Subject.EXERCISE)
_LEARNING_MATERIAL = _CONTENT + (Subject.AUDIO_ASSET, Subject.QUIZ)
_CRU = (Action.CREATE, Action.READ, Action.UPDATE)


def _grid(
    actions: tuple[Action, ...] | Action,
    subjects: tuple[Subject, ...] | Subject,
    *conditions,
    fields: tuple[str, ...] = (),
) -> list[Rule]:
    """展开 动作 x 资源 的规则组合。"""
    actions = actions if isinstance(actions, tuple) else (actions,)
    subjects = subjects if isinstance(subjects, tuple) else (subjects,)
    return [
        Rule(action=action, subject=subject, conditions=tuple(conditions), fields=fields)
        for subject in subjects
        for action in actions
    ]


_INSTRUCTOR_RULES = [
    *_grid(Action.READ, _LEARNING_MATERIAL, _SAME_TENANT, In("status", ("published", "ready"))),
    *_grid(Action.ASSIGN, Subject.LESSON, _SAME_TENANT),
    *_grid((Action.GRADE, Action.EXPORT), Subject.QUIZ_RESULT, _SAME_TENANT),
    # 教师查看学员资料时只返回公开字段。
    *_grid(Action.READ, Subject.USER, _SAME_TENANT, fields=("id", "displayName", "email")),
]

DEFAULT_ROLE_RULES: dict[str, list[Rule]] = {
    SUPER_ADMIN_ROLE: [Rule(Action.MANAGE, Subject.ALL)],
    "admin": [Rule(Action.MANAGE, Subject.ALL)],
    "org_admin": [
        *_grid(
            Action.MANAGE,
            (
                Subject.USER,
                Subject.COURSE,
                Subject.UNIT,
                Subject.LESSON,
                Subject.STORY,
                Subject.STORY_VERSION,
                Subject.EXERCISE,
                Subject.AUDIO_ASSET,
                Subject.QUIZ,
            ),
            _SAME_TENANT,
        ),
        *_grid(Action.MANAGE, Subject.ROLE, Equals("tenantScope", "tenant")),
        *_grid(Action.READ, Subject.QUIZ_RESULT, _SAME_TENANT),
        *_grid(Action.APPROVE, (Subject.STORY_VERSION, Subject.LESSON), _SAME_TENANT),
        *_grid(Action.PUBLISH, (Subject.STORY_VERSION, Subject.LESSON), _SAME_TENANT, Equals("isApproved", True)),
    ],
    "curriculum_lead": [
        *_grid(_CRU, _CONTENT, _SAME_TENANT),
        *_grid(Action.APPROVE, (Subject.STORY_VERSION, Subject.LESSON), _SAME_TENANT),
        *_grid(Action.PUBLISH, (Subject.STORY_VERSION, Subject.LESSON), _SAME_TENANT, Equals("isApproved", True)),
        *_grid(Action.DELETE, (Subject.STORY, Subject.EXERCISE), _SAME_TENANT, In("status", ("draft",))),
        *_grid(Action.ASSIGN, Subject.LESSON, _SAME_TENANT),
    ],
    "content_creator": [
        *_grid(
            _CRU,
            (Subject.STORY, Subject.STORY_VERSION, Subject.CLOZE_CONFIG, Subject.EXERCISE, Subject.QUESTION),
            _SAME_TENANT,
            _OWNED,
        ),
        *_grid(Action.READ, (Subject.COURSE, Subject.UNIT, Subject.LESSON), _SAME_TENANT),
        *_grid(Action.REMIX, Subject.STORY_VERSION, _SAME_TENANT),
        *_grid(
            Action.DELETE,
            (Subject.STORY_VERSION, Subject.EXERCISE),
            _SAME_TENANT,
            _OWNED,
            Equals("status", "draft"),
        ),
    ],
    "instructor": _INSTRUCTOR_RULES,
    "coach": list(_INSTRUCTOR_RULES),
    "voice_artist": [
        *_grid(_CRU, Subject.AUDIO_ASSET, _SAME_TENANT, _OWNED),
        *_grid(Action.READ, (Subject.LESSON, Subject.STORY), _SAME_TENANT),
    ],
    "qa": [
        *_grid(
            Action.READ,
            (Subject.LESSON, Subject.STORY_VERSION, Subject.EXERCISE, Subject.AUDIO_ASSET),
            _SAME_TENANT,
        ),
        *_grid(
            Action.UPDATE,
            (Subject.STORY_VERSION, Subject.EXERCISE, Subject.AUDIO_ASSET),
            _SAME_TENANT,
            Equals("status", "in_review"),
        ),
    ],
    "student": [
        *_grid(Action.READ, _LEARNING_MATERIAL, _SAME_TENANT, Equals("status", "published")),
        *_grid(_CRU, Subject.USER_PROGRESS, _SAME_TENANT, _SELF),
        *_grid((Action.CREATE, Action.READ), Subject.QUIZ_RESULT, _SAME_TENANT, _SELF),
        *_grid(Action.REMIX, Subject.STORY_VERSION, _SAME_TENANT, Equals("isPublished", True)),
    ],
    "guest": [
        *_grid(
            Action.READ,
            Subject.LESSON,
            Equals("status", "published"),
            Equals("tenantId", ContextValue.PUBLIC_TENANT),
        ),
    ],
}


def builtin_role_rules(role: str, *, tenant_scope: str | None) -> list[Rule]:
    """返回内置角色规则（未绑定身份值）。

    没有租户上下文时，除超级管理员外一律不下发规则。
    """
    if tenant_scope is None and role != SUPER_ADMIN_ROLE:
        return []
    return list(DEFAULT_ROLE_RULES.get(role, []))
