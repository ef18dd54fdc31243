import uuid

import jwt

from mailflow.core.config import settings
from mailflow.core.security import (
    Principal,
    create_session_token,
    decode_session_token,
    is_admin_role,
    principal_from_token,
    verify_secret,
)


def test_verify_secret():
    assert verify_secret("abc", "abc") is True
    assert verify_secret("abc", "def") is False
    assert verify_secret(None, "abc") is False
    assert verify_secret("abc", None) is False
    assert verify_secret("", "abc") is False


def test_admin_roles_are_case_insensitive():
    assert is_admin_role("Admin")
    assert is_admin_role("superadmin")
    assert not is_admin_role("member")
    assert not is_admin_role(None)


def test_token_round_trip():
    user_id = uuid.uuid4()
    principal = principal_from_token(create_session_token(user_id, "admin"))

    assert principal == Principal(user_id=user_id, role="admin", is_admin=True)


def test_member_token_is_not_admin():
    principal = principal_from_token(create_session_token(uuid.uuid4(), "member"))
    assert principal is not None
    assert principal.is_admin is False


def test_system_role_cannot_be_minted():
    principal = principal_from_token(create_session_token(uuid.uuid4(), "system"))
    assert principal.is_admin is False


def test_invalid_tokens():
    assert principal_from_token("garbage") is None
    forged = jwt.encode({"sub": str(uuid.uuid4()), "role": "admin"}, "other", algorithm="HS256")
    assert principal_from_token(forged) is None


def test_previous_secret_still_verifies(monkeypatch):
    user_id = uuid.uuid4()
    token = create_session_token(user_id, "admin")

    monkeypatch.setattr(settings, "JWT_SECRET", "rotated-secret")
    monkeypatch.setattr(settings, "JWT_SECRET_PREVIOUS", "test-jwt-secret")

    assert decode_session_token(token)["sub"] == str(user_id)
