"""Security utilities for JWT session tokens and the acting principal."""

import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from mailflow.core.config import settings

SYSTEM_ROLE = "system"


@dataclass(frozen=True)
class Principal:
    """Acting caller as seen by the automation service."""

    user_id: UUID | None
    role: str
    is_admin: bool

    @classmethod
    def system(cls) -> "Principal":
        """Principal for cron/worker/CLI callers (audited with no actor id)."""
        return cls(user_id=None, role=SYSTEM_ROLE, is_admin=True)


def is_admin_role(role: str | None) -> bool:
    return bool(role) and role.lower() in settings.admin_roles_list


def verify_secret(provided: str | None, expected: str | None) -> bool:
    """Constant-time comparison for shared secrets."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


# =============================================================================
# Session Token (JWT in cookie or Authorization header)
# =============================================================================

def create_session_token(user_id: UUID, role: str) -> str:
    """
    Create signed session JWT.

    Always signs with current secret (JWT_SECRET).
    """
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_session_token(token: str) -> dict:
    """
    Decode and verify session JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    last_error = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore


def principal_from_token(token: str) -> Principal | None:
    """Resolve a principal from a session token, None if invalid."""
    try:
        claims = decode_session_token(token)
    except jwt.InvalidTokenError:
        return None
    try:
        user_id = UUID(str(claims.get("sub")))
    except ValueError:
        return None
    role = str(claims.get("role") or "")
    if role == SYSTEM_ROLE:
        # System principals are never minted from user tokens
        return Principal(user_id=user_id, role=role, is_admin=False)
    return Principal(user_id=user_id, role=role, is_admin=is_admin_role(role))
