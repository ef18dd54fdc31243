"""Audit sink - best-effort recording of automation mutations.

Guidelines:
- Record identifiers and counts only, never email addresses
- Failures are logged and swallowed; they never change an operation's outcome
"""

import logging
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from mailflow.db.models import AuditLogEntry

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    def record(
        self,
        actor_id: UUID | None,
        action: str,
        resource_type: str,
        resource_id: str | UUID | None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...


class DatabaseAuditSink:
    """Append audit rows inside a SAVEPOINT so a failed insert cannot poison the session."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        actor_id: UUID | None,
        action: str,
        resource_type: str,
        resource_id: str | UUID | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            with self.db.begin_nested():
                self.db.add(
                    AuditLogEntry(
                        actor_id=actor_id,
                        action=action,
                        resource_type=resource_type,
                        resource_id=str(resource_id) if resource_id is not None else None,
                        details=metadata or {},
                    )
                )
            self.db.commit()
        except Exception:
            logger.warning(
                "Audit record failed action=%s resource=%s:%s",
                action,
                resource_type,
                resource_id,
                exc_info=True,
            )
            try:
                self.db.rollback()
            except Exception:
                logger.warning("Rollback after audit failure also failed", exc_info=True)
