"""FastAPI dependencies: database session, acting principal, service wiring."""

from typing import Generator

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from mailflow.core.security import Principal, principal_from_token
from mailflow.db.session import SessionLocal
from mailflow.services.automation_service import AutomationService, build_automation_service

COOKIE_NAME = "mailflow_session"
CSRF_HEADER = "X-Requested-With"
CSRF_HEADER_VALUE = "XMLHttpRequest"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_principal(request: Request) -> Principal | None:
    """
    Resolve the acting principal from cookie or Bearer token.

    Returns None rather than raising: the service decides between
    unauthorized and forbidden so every operation fails closed the same way.
    """
    token = request.cookies.get(COOKIE_NAME)
    if not token:
        auth_header = request.headers.get("authorization", "")
        if auth_header.lower().startswith("bearer "):
            token = auth_header[7:].strip()
    if not token:
        return None
    return principal_from_token(token)


def require_csrf_header(request: Request) -> None:
    """
    Verify CSRF header on cookie-authenticated mutations.

    Bearer-token callers are not exposed to CSRF and are not checked.

    Raises:
        HTTPException 403: Missing or invalid CSRF header
    """
    if COOKIE_NAME not in request.cookies:
        return
    if request.headers.get(CSRF_HEADER) != CSRF_HEADER_VALUE:
        raise HTTPException(
            status_code=403,
            detail=f"Missing CSRF header. Include '{CSRF_HEADER}: {CSRF_HEADER_VALUE}'",
        )


def get_automation_service(db: Session = Depends(get_db)) -> AutomationService:
    return build_automation_service(db)
