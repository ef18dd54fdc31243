"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from mailflow.db.base import Base, utcnow
from mailflow.db.models.automations import JSONType


class AuditLogEntry(Base):
    """
    Append-only record of automation mutations.

    Written by services.audit_service only; nothing updates or deletes rows.
    Metadata holds identifiers and counts, never email addresses.
    """

    __tablename__ = "automation_audit_logs"
    __table_args__ = (
        Index("idx_automation_audit_resource", "resource_type", "resource_id", "created_at"),
        Index("idx_automation_audit_actor", "actor_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    details: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
