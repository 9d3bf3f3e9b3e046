from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

import iam_api.models  # noqa: F401
from iam_api.core.config import Settings
from iam_api.core.security import IdentityContext
from iam_api.exceptions import AuthenticationFailure, AuthorizationFailure
from iam_api.models.base import Base
from iam_api.models.permission import Permission, Role, RolePermission, UserPermission, UserRole
from iam_api.models.policy import ResourcePolicy
from iam_api.services.ability import Ability, resolve_ability
from iam_api.services.fact_store import FactStore
from iam_api.services.guard import (
    FORBIDDEN_MESSAGE,
    NO_RULES_MESSAGE,
    POLICY_DENIED_MESSAGE,
    UNAUTHORIZED_MESSAGE,
    RequestAuthorization,
    evaluate,
    filter_fields,
)
from iam_api.services.vocabulary import Action, ContextValue, Equals, In, RequiredRule, Rule, Subject

READ_LESSON = RequiredRule(Action.READ, Subject.LESSON)


@pytest.fixture
def db_session() -> Session:
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    Base.metadata.create_all(engine)
    local_session = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)
    db = local_session()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def store(db_session: Session) -> FactStore:
    return FactStore(db_session)


def _permission(db: Session, resource: str, action: str) -> Permission:
    permission = Permission(
        name=f"{action} {resource}",
        slug=f"{resource.lower()}:{action.lower()}:{uuid4().hex[:6]}",
        resource=resource,
        action=action,
    )
    db.add(permission)
    db.flush()
    return permission


def _role(db: Session, slug: str, *permissions: Permission) -> Role:
    role = Role(name=slug.title(), slug=slug)
    db.add(role)
    db.flush()
    for permission in permissions:
        db.add(RolePermission(role_id=role.id, permission_id=permission.id))
    db.flush()
    return role


def _assign(db: Session, user_id, role: Role, tenant_id: str | None = None) -> None:
    db.add(UserRole(user_id=user_id, role_id=role.id, tenant_id=tenant_id))
    db.flush()


def _override(db: Session, user_id, permission: Permission, *, tenant_id: str | None, granted: bool) -> None:
    db.add(UserPermission(user_id=user_id, permission_id=permission.id, tenant_id=tenant_id, granted=granted))
    db.flush()


def _identity(user_id, tenant_id: str | None = "t1", *roles: str) -> IdentityContext:
    return IdentityContext(subject_id=str(user_id), tenant_id=tenant_id, role_ids=tuple(roles))


def test_identity_without_roles_or_overrides_is_denied(store: FactStore):
    result = evaluate([READ_LESSON], _identity(uuid4()), store=store)

    assert result.allowed is False
    assert result.error == FORBIDDEN_MESSAGE


def test_missing_identity_is_an_authentication_failure(store: FactStore):
    result = evaluate([READ_LESSON], None, store=store)

    assert result.allowed is False
    assert result.error == UNAUTHORIZED_MESSAGE
    assert result.is_authentication_failure


def test_empty_rule_list_is_refused(store: FactStore):
    result = evaluate([], _identity(uuid4(), None, "super_admin"), store=store)

    assert result.allowed is False
    assert result.error == NO_RULES_MESSAGE


def test_teacher_role_reads_lesson_in_tenant(db_session: Session, store: FactStore):
    user_id = uuid4()
    teacher = _role(db_session, "teacher", _permission(db_session, "Lesson", "read"))
    _assign(db_session, user_id, teacher, "t1")

    result = evaluate([READ_LESSON], _identity(user_id), store=store)

    assert result.allowed is True
    assert result.error is None
    assert result.restricted_fields is None


def test_all_required_rules_must_pass(db_session: Session, store: FactStore):
    user_id = uuid4()
    _assign(db_session, user_id, _role(db_session, "teacher", _permission(db_session, "Lesson", "read")), "t1")

    result = evaluate([READ_LESSON, RequiredRule(Action.UPDATE, Subject.LESSON)], _identity(user_id), store=store)

    assert result.allowed is False
    assert [rule.describe() for rule in result.failed_rules] == ["update:Lesson"]


@pytest.mark.parametrize("deny_first", [True, False])
def test_deny_override_wins_over_role_grant(db_session: Session, store: FactStore, deny_first: bool):
    user_id = uuid4()
    lesson_read = _permission(db_session, "Lesson", "read")
    if deny_first:
        _override(db_session, user_id, lesson_read, tenant_id="t1", granted=False)
    _assign(db_session, user_id, _role(db_session, "teacher", lesson_read), "t1")
    if not deny_first:
        _override(db_session, user_id, lesson_read, tenant_id="t1", granted=False)

    result = evaluate([READ_LESSON], _identity(user_id), store=store)

    assert result.allowed is False
    assert result.error == FORBIDDEN_MESSAGE


def test_deny_override_masks_wildcard_grants(db_session: Session, store: FactStore):
    user_id = uuid4()
    _assign(db_session, user_id, _role(db_session, "owner", _permission(db_session, "all", "manage")))
    _override(db_session, user_id, _permission(db_session, "Lesson", "read"), tenant_id=None, granted=False)

    ability = resolve_ability(_identity(user_id), store)

    assert not ability.can(READ_LESSON)
    assert ability.can(RequiredRule(Action.UPDATE, Subject.LESSON))
    assert ability.can(RequiredRule(Action.READ, Subject.COURSE))


def test_deny_override_beats_grant_override(db_session: Session, store: FactStore):
    user_id = uuid4()
    lesson_read = _permission(db_session, "Lesson", "read")
    _override(db_session, user_id, lesson_read, tenant_id=None, granted=True)
    _override(db_session, user_id, lesson_read, tenant_id="t1", granted=False)

    assert not evaluate([READ_LESSON], _identity(user_id, "t1"), store=store).allowed
    assert evaluate([READ_LESSON], _identity(user_id, "t2"), store=store).allowed


def test_grant_override_without_role(db_session: Session, store: FactStore):
    user_id = uuid4()
    _override(db_session, user_id, _permission(db_session, "Course", "publish"), tenant_id="t1", granted=True)

    assert evaluate([RequiredRule(Action.PUBLISH, Subject.COURSE)], _identity(user_id), store=store).allowed


def test_tenant_scoped_override_does_not_leak(db_session: Session, store: FactStore):
    user_id = uuid4()
    lesson_read = _permission(db_session, "Lesson", "read")
    _assign(db_session, user_id, _role(db_session, "teacher", lesson_read))
    _override(db_session, user_id, lesson_read, tenant_id="tenant-a", granted=False)

    assert not evaluate([READ_LESSON], _identity(user_id, "tenant-a"), store=store).allowed
    assert evaluate([READ_LESSON], _identity(user_id, "tenant-b"), store=store).allowed
    assert evaluate([READ_LESSON], _identity(user_id, None), store=store).allowed


def test_global_override_applies_to_every_tenant(db_session: Session, store: FactStore):
    user_id = uuid4()
    lesson_read = _permission(db_session, "Lesson", "read")
    _assign(db_session, user_id, _role(db_session, "teacher", lesson_read))
    _override(db_session, user_id, lesson_read, tenant_id=None, granted=False)

    for tenant in ("tenant-a", "tenant-b", None):
        assert not evaluate([READ_LESSON], _identity(user_id, tenant), store=store).allowed


def test_tenant_scoped_role_assignment(db_session: Session, store: FactStore):
    user_id = uuid4()
    _assign(db_session, user_id, _role(db_session, "teacher", _permission(db_session, "Lesson", "read")), "tenant-a")

    assert resolve_ability(_identity(user_id), store, "tenant-a").can(READ_LESSON)
    assert not resolve_ability(_identity(user_id), store, "tenant-b").can(READ_LESSON)
    assert not resolve_ability(_identity(user_id), store, None).can(READ_LESSON)


def test_token_role_matches_store_role_by_slug(db_session: Session, store: FactStore):
    _role(db_session, "teacher", _permission(db_session, "Lesson", "read"))

    assert evaluate([READ_LESSON], _identity(uuid4(), "t1", "teacher"), store=store).allowed


def test_store_role_is_authoritative_over_builtin_definition(db_session: Session, store: FactStore):
    _role(db_session, "admin", _permission(db_session, "Lesson", "read"))
    identity = _identity(uuid4(), "t1", "admin")

    ability = resolve_ability(identity, store)

    assert ability.can(READ_LESSON)
    assert not ability.can(RequiredRule(Action.DELETE, Subject.USER))


def test_builtin_role_requires_tenant_scope(store: FactStore):
    assert evaluate([READ_LESSON], _identity(uuid4(), "t1", "admin"), store=store).allowed
    assert not evaluate([READ_LESSON], _identity(uuid4(), None, "admin"), store=store).allowed
    assert evaluate([READ_LESSON], _identity(uuid4(), None, "super_admin"), store=store).allowed


def test_unknown_token_role_grants_nothing(store: FactStore):
    assert not evaluate([READ_LESSON], _identity(uuid4(), "t1", "pirate"), store=store).allowed


def test_builtin_conditions_check_target_tenant(store: FactStore):
    user_id = uuid4()
    ability = resolve_ability(_identity(user_id, "t1", "instructor"), store)
    published = {"tenantId": "t1", "status": "published"}

    assert ability.can(RequiredRule(Action.READ, Subject.LESSON, published))
    assert not ability.can(RequiredRule(Action.READ, Subject.LESSON, {**published, "tenantId": "t2"}))
    assert not ability.can(RequiredRule(Action.READ, Subject.LESSON, {**published, "status": "draft"}))
    assert not ability.can(RequiredRule(Action.READ, Subject.LESSON, {"status": "published"}))


def test_builtin_ownership_condition_binds_subject_id(store: FactStore):
    user_id = uuid4()
    ability = resolve_ability(_identity(user_id, "t1", "content_creator"), store)

    mine = {"tenantId": "t1", "ownerId": user_id}
    theirs = {"tenantId": "t1", "ownerId": uuid4()}

    assert ability.can(RequiredRule(Action.UPDATE, Subject.STORY, mine))
    assert not ability.can(RequiredRule(Action.UPDATE, Subject.STORY, theirs))


def test_guest_role_is_limited_to_public_tenant(store: FactStore):
    ability = resolve_ability(_identity(uuid4(), "public", "guest"), store, public_tenant_id="public")

    assert ability.can(RequiredRule(Action.READ, Subject.LESSON, {"tenantId": "public", "status": "published"}))
    assert not ability.can(RequiredRule(Action.READ, Subject.LESSON, {"tenantId": "t1", "status": "published"}))


def test_restricted_fields_are_surfaced_and_filterable(store: FactStore):
    identity = _identity(uuid4(), "t1", "instructor")

    result = evaluate([RequiredRule(Action.READ, Subject.USER, {"tenantId": "t1"})], identity, store=store)

    assert result.allowed is True
    assert result.restricted_fields == ["displayName", "email", "id"]
    record = {"id": "u9", "displayName": "Ana", "email": "ana@example.com", "passwordHash": "x"}
    assert filter_fields(record, result.restricted_fields) == {
        "id": "u9",
        "displayName": "Ana",
        "email": "ana@example.com",
    }
    assert filter_fields(record, None) is record


def test_unrestricted_rule_clears_field_list():
    identity = _identity("u1")
    ability = Ability(
        identity=identity,
        tenant_scope="t1",
        rules=(
            Rule(Action.READ, Subject.USER, fields=("id",)),
            Rule(Action.READ, Subject.USER),
        ),
    )

    result = evaluate([RequiredRule(Action.READ, Subject.USER)], identity, ability=ability)

    assert result.allowed is True
    assert result.restricted_fields is None


def test_pre_resolved_ability_needs_no_store():
    identity = _identity("u1")
    ability = Ability(identity=identity, tenant_scope="t1", rules=(Rule(Action.MANAGE, Subject.LESSON),))

    assert evaluate([READ_LESSON], identity, ability=ability).allowed
    assert not evaluate([RequiredRule(Action.READ, Subject.COURSE)], identity, ability=ability).allowed


def test_custom_denial_message():
    identity = _identity("u1")
    ability = Ability(identity=identity, tenant_scope="t1", rules=())

    result = evaluate([READ_LESSON], identity, ability=ability, message="Lessons are locked")

    assert result.error == "Lessons are locked"


def test_permissions_outside_vocabulary_grant_nothing(db_session: Session, store: FactStore):
    user_id = uuid4()
    _assign(db_session, user_id, _role(db_session, "odd", _permission(db_session, "Spaceship", "fly")))

    ability = resolve_ability(_identity(user_id), store)

    assert ability.rules == ()


def test_wildcard_permission_tokens(db_session: Session, store: FactStore):
    user_id = uuid4()
    _assign(db_session, user_id, _role(db_session, "everything", _permission(db_session, "*", "*")))

    ability = resolve_ability(_identity(user_id), store)

    assert ability.rules == (Rule(Action.MANAGE, Subject.ALL),)
    assert ability.can(RequiredRule(Action.EXPORT, Subject.QUIZ_RESULT))


def test_case_insensitive_resource_names(db_session: Session, store: FactStore):
    user_id = uuid4()
    _assign(db_session, user_id, _role(db_session, "teacher", _permission(db_session, "lesson", "READ")))

    assert resolve_ability(_identity(user_id), store).can(READ_LESSON)


def test_effective_rules_and_payload_exclude_denied(db_session: Session, store: FactStore):
    user_id = uuid4()
    lesson_read = _permission(db_session, "Lesson", "read")
    course_read = _permission(db_session, "Course", "read")
    _assign(db_session, user_id, _role(db_session, "teacher", lesson_read, course_read))
    _override(db_session, user_id, lesson_read, tenant_id="t1", granted=False)

    payload = resolve_ability(_identity(user_id), store).to_payload()

    assert payload["subject_id"] == str(user_id)
    assert payload["tenant_id"] == "t1"
    assert payload["rules"] == [{"action": "read", "subject": "Course"}]
    assert payload["denied"] == [{"action": "read", "subject": "Lesson"}]


def test_condition_predicates():
    assert Equals("tenantId", "t1").evaluate({"tenantId": "t1"})
    assert not Equals("tenantId", "t1").evaluate({})
    assert not Equals("tenantId", None).evaluate({"tenantId": None})
    assert In("status", ("draft", "review")).evaluate({"status": "review"})
    assert not In("status", ("draft",)).evaluate({"status": "published"})

    rule = Rule(Action.READ, Subject.LESSON, conditions=(Equals("ownerId", ContextValue.SUBJECT_ID),))
    assert rule.conditions_hold(None)


def test_required_rule_rejects_unknown_names():
    assert RequiredRule.of("READ", "lesson") == READ_LESSON
    with pytest.raises(ValueError):
        RequiredRule.of("fly", "Lesson")
    with pytest.raises(ValueError):
        RequiredRule.of("read", "Spaceship")


class CountingFactStore(FactStore):
    def __init__(self, db: Session) -> None:
        super().__init__(db)
        self.assignment_lookups = 0

    def find_role_assignments(self, user_id, tenant_id=None):
        self.assignment_lookups += 1
        return super().find_role_assignments(user_id, tenant_id)


def test_request_authorization_resolves_ability_once(db_session: Session):
    user_id = uuid4()
    _assign(db_session, user_id, _role(db_session, "teacher", _permission(db_session, "Lesson", "read")), "t1")
    store = CountingFactStore(db_session)
    auth = RequestAuthorization(_identity(user_id), store, Settings(auth_jwt_secret="x"))

    assert auth.require(READ_LESSON).allowed
    assert auth.check(READ_LESSON).allowed
    assert not auth.check(RequiredRule(Action.DELETE, Subject.LESSON)).allowed
    assert store.assignment_lookups == 1


def test_request_authorization_raises_distinct_failures(store: FactStore):
    settings = Settings(auth_jwt_secret="x")

    with pytest.raises(AuthenticationFailure) as unauthenticated:
        RequestAuthorization(None, store, settings).require(READ_LESSON)
    assert unauthenticated.value.status_code == 401

    with pytest.raises(AuthorizationFailure) as forbidden:
        RequestAuthorization(_identity(uuid4()), store, settings).require(READ_LESSON)
    assert forbidden.value.status_code == 403
    assert forbidden.value.detail == FORBIDDEN_MESSAGE


def _policy(db: Session, resource: str, conditions: dict, *, effect: str = "deny", tenant_id=None, active=True):
    policy = ResourcePolicy(
        name=f"{effect} {resource}",
        resource=resource,
        effect=effect,
        conditions=conditions,
        tenant_id=tenant_id,
        is_active=active,
    )
    db.add(policy)
    db.flush()
    return policy


def test_conditional_rule_fails_for_empty_or_global_target(store: FactStore):
    ability = resolve_ability(_identity(uuid4(), "t1", "org_admin"), store)

    assert ability.can(RequiredRule(Action.UPDATE, Subject.USER, {"tenantId": "t1"}))
    assert not ability.can(RequiredRule(Action.UPDATE, Subject.USER, {"tenantId": "t2"}))
    assert not ability.can(RequiredRule(Action.UPDATE, Subject.USER, {"tenantId": None}))
    assert not ability.can(RequiredRule(Action.UPDATE, Subject.USER, {}))


def test_org_admin_manages_only_tenant_scoped_roles(store: FactStore):
    ability = resolve_ability(_identity(uuid4(), "t1", "org_admin"), store)

    assert ability.can(RequiredRule(Action.UPDATE, Subject.ROLE, {"tenantScope": "tenant"}))
    assert not ability.can(RequiredRule(Action.UPDATE, Subject.ROLE, {"tenantScope": "system"}))
    assert not ability.can(RequiredRule(Action.CREATE, Subject.ROLE, {"tenantScope": None}))


def test_deny_policy_blocks_after_role_grant(db_session: Session, store: FactStore):
    user_id = uuid4()
    _assign(db_session, user_id, _role(db_session, "teacher", _permission(db_session, "Lesson", "read")), "t1")
    _policy(db_session, "Lesson", {"tenantId": "${ctx.tenantId}"})

    result = evaluate([READ_LESSON], _identity(user_id), store=store)
    other_subject = evaluate([RequiredRule(Action.READ, Subject.COURSE)], _identity(uuid4(), "t1", "admin"), store=store)

    assert result.allowed is False
    assert result.error == POLICY_DENIED_MESSAGE
    assert result.failed_rules == [READ_LESSON]
    assert other_subject.allowed is True


def test_policy_conditions_must_match_identity_context(db_session: Session, store: FactStore):
    user_id = uuid4()
    _policy(db_session, "Lesson", {"userId": {"in": ["someone-else"]}})
    _policy(db_session, "Lesson", {"tenantId": "t2"})
    _policy(db_session, "Lesson", {"status": "draft"})
    _policy(db_session, "Lesson", {}, effect="allow")
    _policy(db_session, "Lesson", {}, active=False)

    assert evaluate([READ_LESSON], _identity(user_id, "t1", "admin"), store=store).allowed

    _policy(db_session, "Lesson", {"userId": {"in": ["${ctx.userId}"]}})
    denied = evaluate([READ_LESSON], _identity(user_id, "t1", "admin"), store=store)
    assert denied.error == POLICY_DENIED_MESSAGE


def test_tenant_policy_only_applies_in_its_tenant(db_session: Session, store: FactStore):
    _policy(db_session, "all", {}, tenant_id="t2")

    assert evaluate([READ_LESSON], _identity(uuid4(), "t1", "admin"), store=store).allowed
    blocked = evaluate([READ_LESSON], _identity(uuid4(), "t2", "admin"), store=store)
    assert blocked.error == POLICY_DENIED_MESSAGE


def test_policy_denial_is_reported_as_forbidden(db_session: Session, store: FactStore):
    _policy(db_session, "Lesson", {})
    identity = _identity(uuid4(), "t1", "admin")
    auth = RequestAuthorization(identity, store, Settings(auth_jwt_secret="x"))

    with pytest.raises(AuthorizationFailure) as exc:
        auth.require(READ_LESSON)

    assert exc.value.status_code == 403
    assert exc.value.detail == POLICY_DENIED_MESSAGE
    assert auth.ability().to_payload()["policy_denials"][0]["subject"] == "Lesson"


def test_request_authorization_reports_authentication_state(store: FactStore):
    settings = Settings(auth_jwt_secret="x")

    assert RequestAuthorization(_identity(uuid4()), store, settings).is_authenticated
    anonymous = RequestAuthorization(None, store, settings)
    assert not anonymous.is_authenticated
    assert anonymous.check(READ_LESSON).is_authentication_failure
