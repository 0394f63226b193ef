import jwt
import pytest
from fastapi import HTTPException

from docintake.core.auth import Capability, CurrentUser, SecurityContext, get_current_user
from docintake.core.config import get_settings


def _make_token(
    secret: str,
    aud: str = "authenticated",
    *,
    role: str | None = "ACCOUNTANT",
    company_id: str | None = "company-1",
    capabilities: list[str] | None = None,
    user_role: str | None = None,
) -> str:
    app_meta = {}
    if role is not None:
        app_meta["role"] = role
    if company_id is not None:
        app_meta["company_id"] = company_id
    if capabilities is not None:
        app_meta["capabilities"] = capabilities
    user_meta = {"role": user_role} if user_role else {}

    payload = {
        "sub": "00000000-0000-0000-0000-000000000123",
        "email": "books@test.local",
        "app_metadata": app_meta,
        "user_metadata": user_meta,
        "aud": aud,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def jwt_env(monkeypatch):
    get_settings.cache_clear()
    monkeypatch.setenv("SUPABASE_JWT_SECRET", "test-secret")
    monkeypatch.setenv("SUPABASE_JWT_AUDIENCE", "authenticated")
    get_settings.cache_clear()


def test_token_yields_user_with_company_and_role(jwt_env):
    user = get_current_user(authorization=f"Bearer {_make_token('test-secret')}")

    assert user.role == "ACCOUNTANT"
    assert user.company_id == "company-1"
    assert user.email == "books@test.local"
    assert user.security.can(Capability.VIEW_GL_ACCOUNTS)


def test_wrong_audience_is_401(jwt_env):
    with pytest.raises(HTTPException) as exc:
        get_current_user(authorization=f"Bearer {_make_token('test-secret', 'other')}")
    assert exc.value.status_code == 401


def test_wrong_secret_is_401(jwt_env):
    with pytest.raises(HTTPException) as exc:
        get_current_user(authorization=f"Bearer {_make_token('another-secret')}")
    assert exc.value.status_code == 401


def test_missing_header_is_401(jwt_env):
    with pytest.raises(HTTPException) as exc:
        get_current_user(authorization=None)
    assert exc.value.status_code == 401


def test_user_metadata_role_is_ignored(jwt_env):
    token = _make_token("test-secret", role=None, user_role="ADMIN")
    with pytest.raises(HTTPException) as exc:
        get_current_user(authorization=f"Bearer {token}")
    assert exc.value.status_code == 403


def test_company_is_required(jwt_env):
    with pytest.raises(HTTPException) as exc:
        get_current_user(authorization=f"Bearer {_make_token('test-secret', company_id=None)}")
    assert exc.value.status_code == 403


def test_explicit_capabilities_override_role(jwt_env):
    token = _make_token("test-secret", role="MEMBER", capabilities=["create_expense", "view_gl_accounts", "bogus"])
    user = get_current_user(authorization=f"Bearer {token}")

    assert user.capabilities == frozenset({"create_expense", "view_gl_accounts"})
    assert user.security.can(Capability.VIEW_GL_ACCOUNTS)
    assert not user.security.can(Capability.CREATE_EXPENSE.value + "x")


@pytest.mark.parametrize(
    "role, capability, allowed",
    [
        ("ADMIN", Capability.REVIEW_SUGGESTIONS, True),
        ("ACCOUNTANT", Capability.CREATE_VENDOR, True),
        ("MEMBER", Capability.CREATE_EXPENSE, True),
        ("MEMBER", Capability.CREATE_CONTACT, True),
        ("MEMBER", Capability.CREATE_VENDOR, False),
        ("MEMBER", Capability.VIEW_GL_ACCOUNTS, False),
        ("UNKNOWN", Capability.CREATE_EXPENSE, False),
    ],
)
def test_role_capabilities(role, capability, allowed):
    assert SecurityContext.for_role(role).can(capability) is allowed


def test_current_user_security_follows_role():
    user = CurrentUser(id="u1", role="MEMBER", company_id="company-1")
    assert user.security == SecurityContext.for_role("MEMBER")
    assert SecurityContext.unrestricted().can(Capability.CREATE_CATEGORY)
