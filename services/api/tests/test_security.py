import logging
import time

import jwt
import pytest
from pydantic import ValidationError

from iam_api.core.config import Settings, get_settings
from iam_api.core.security import (
    IdentityContext,
    extract_bearer_token,
    extract_cookie_token,
    extract_identity,
)

SECRET = "unit-test-secret-0123456789-abcdefghij"


def _settings(**overrides) -> Settings:
    values = {"auth_jwt_secret": SECRET, "app_env": "test"}
    values.update(overrides)
    return Settings(**values)


def _token(claims: dict, *, secret: str = SECRET, algorithm: str = "HS256") -> str:
    payload = {"exp": int(time.time()) + 600}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm=algorithm)


def test_extract_identity_from_bearer_header():
    token = _token({"userId": "user-1", "tenantId": "t1", "role": "instructor"})

    identity = extract_identity(f"Bearer {token}", None, settings=_settings())

    assert identity == IdentityContext(subject_id="user-1", tenant_id="t1", role_ids=("instructor",))


def test_extract_identity_falls_back_to_cookie():
    token = _token({"userId": "user-2"})

    identity = extract_identity(None, f"theme=dark; auth_token={token}", settings=_settings())

    assert identity is not None
    assert identity.subject_id == "user-2"
    assert identity.tenant_id is None
    assert identity.role_ids == ()


def test_header_takes_precedence_over_cookie():
    header_token = _token({"userId": "from-header"})
    cookie_token = _token({"userId": "from-cookie"})

    identity = extract_identity(f"Bearer {header_token}", f"auth_token={cookie_token}", settings=_settings())

    assert identity.subject_id == "from-header"


def test_custom_cookie_name():
    token = _token({"userId": "user-3"})
    settings = _settings(auth_cookie_name="session_jwt")

    assert extract_identity(None, f"auth_token={token}", settings=settings) is None
    assert extract_identity(None, f"session_jwt={token}", settings=settings).subject_id == "user-3"


def test_no_token_returns_none():
    assert extract_identity(None, None, settings=_settings()) is None
    assert extract_identity("Basic dXNlcjpwYXNz", "other=1", settings=_settings()) is None


def test_missing_secret_fails_closed_with_warning(caplog):
    token = _token({"userId": "user-1"})

    with caplog.at_level(logging.WARNING, logger="iam_api"):
        identity = extract_identity(f"Bearer {token}", None, settings=_settings(auth_jwt_secret=None))

    assert identity is None
    assert any("auth_jwt_secret is not configured" in record.getMessage() for record in caplog.records)


def test_missing_secret_in_production_is_silent(caplog):
    token = _token({"userId": "user-1"})

    with caplog.at_level(logging.WARNING, logger="iam_api"):
        identity = extract_identity(
            f"Bearer {token}",
            None,
            settings=_settings(auth_jwt_secret="   ", app_env="production"),
        )

    assert identity is None
    assert not caplog.records


@pytest.mark.parametrize(
    "token",
    [
        _token({"userId": "user-1"}, secret="another-secret-0123456789-abcdefghij"),
        _token({"userId": "user-1", "exp": int(time.time()) - 60}),
        _token({"userId": "user-1"}, algorithm="HS512"),
        "not-a-jwt",
    ],
    ids=["bad-signature", "expired", "other-algorithm", "malformed"],
)
def test_verification_failures_yield_no_identity(token):
    assert extract_identity(f"Bearer {token}", None, settings=_settings()) is None


def test_token_without_user_id_yields_no_identity():
    token = _token({"tenantId": "t1", "role": "admin"})

    assert extract_identity(f"Bearer {token}", None, settings=_settings()) is None


def test_extract_bearer_token_skips_placeholders():
    token = _token({"userId": "user-1"})

    assert extract_bearer_token(f"Bearer {token}, Bearer {{{{token}}}}") == token
    assert extract_bearer_token("Bearer ${ACCESS_TOKEN}") is None
    assert extract_bearer_token("") is None


def test_extract_cookie_token_handles_garbage():
    assert extract_cookie_token("auth_token=abc%2Edef", "auth_token") == "abc.def"
    assert extract_cookie_token("auth_token=", "auth_token") is None
    assert extract_cookie_token(None, "auth_token") is None


def test_settings_reject_other_algorithms():
    with pytest.raises(ValidationError):
        Settings(auth_jwt_algorithm="RS256")

    assert Settings(auth_jwt_algorithm="hs256").auth_jwt_algorithm == "HS256"


def test_settings_read_prefixed_env(monkeypatch):
    monkeypatch.setenv("IAM_AUTH_JWT_SECRET", SECRET)
    monkeypatch.setenv("IAM_PERMISSION_LIST_LIMIT", "25")
    monkeypatch.setenv("IAM_APP_ENV", "production")
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.auth_jwt_secret == SECRET
        assert settings.permission_list_limit == 25
        assert settings.is_production
    finally:
        get_settings.cache_clear()
