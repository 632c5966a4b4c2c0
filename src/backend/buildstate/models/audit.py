"""Audit log model for tracking inspection lifecycle events."""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import String, Text, ForeignKey, Enum as SQLEnum, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from buildstate.models.base import Base

if TYPE_CHECKING:
    from buildstate.models.user import User


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Inspection lifecycle
    INSPECTION_CREATED = "inspection_created"
    INSPECTION_UPDATED = "inspection_updated"
    INSPECTION_DELETED = "inspection_deleted"
    INSPECTION_STARTED = "inspection_started"
    INSPECTION_CANCELLED = "inspection_cancelled"
    INSPECTION_COMPLETED = "inspection_completed"

    # Inspection children
    FINDING_ADDED = "finding_added"
    FINDING_DELETED = "finding_deleted"
    ATTACHMENT_ADDED = "attachment_added"
    ATTACHMENT_DELETED = "attachment_deleted"
    REMINDER_CREATED = "reminder_created"

    # Follow-up work
    JOB_CREATED = "job_created"


class AuditLog(Base):
    """Append-only audit log entry."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # When the action occurred
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    # What action was performed
    action: Mapped[AuditAction] = mapped_column(
        SQLEnum(AuditAction, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        index=True,
    )

    # Who performed the action (nullable for system events)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    user: Mapped["User | None"] = relationship("User")

    # What entity was affected
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Request metadata
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Before/after state for changes
    old_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    extra_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        Index("ix_audit_logs_timestamp_action", "timestamp", "action"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action}, timestamp={self.timestamp})>"
