"""Inspection model and its child records."""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import String, Text, Integer, Float, DateTime, ForeignKey, JSON, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from buildstate.models.base import Base, TimestampMixin, utcnow

if TYPE_CHECKING:
    from buildstate.models.property import Property, Unit
    from buildstate.models.user import User


class InspectionType(str, Enum):
    """Inspection type enum."""
    ROUTINE = "routine"
    MOVE_IN = "move_in"
    MOVE_OUT = "move_out"
    EMERGENCY = "emergency"
    COMPLIANCE = "compliance"


class InspectionStatus(str, Enum):
    """Inspection status enum."""
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class FindingSeverity(str, Enum):
    """Severity of a structured finding."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def _enum(enum_cls):
    return SQLEnum(enum_cls, values_callable=lambda x: [e.value for e in x])


class Inspection(Base, TimestampMixin):
    """Property or unit inspection."""

    __tablename__ = "inspections"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    property_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("properties.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    unit_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("units.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    inspection_type: Mapped[InspectionType] = mapped_column(
        _enum(InspectionType), nullable=False, default=InspectionType.ROUTINE
    )
    status: Mapped[InspectionStatus] = mapped_column(
        _enum(InspectionStatus), nullable=False, default=InspectionStatus.SCHEDULED, index=True
    )
    scheduled_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    # Write-once, set by completion
    completed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_to_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    completed_by_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_by_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    findings: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    parent_property: Mapped["Property"] = relationship("Property")
    unit: Mapped["Unit | None"] = relationship("Unit")
    assigned_to: Mapped["User | None"] = relationship("User", foreign_keys=[assigned_to_id])
    tag_rows: Mapped[list["InspectionTag"]] = relationship(
        "InspectionTag",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InspectionTag.tag",
    )
    finding_items: Mapped[list["Finding"]] = relationship(
        "Finding",
        back_populates="inspection",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Finding.created_at",
    )

    @property
    def tags(self) -> list[str]:
        return [row.tag for row in self.tag_rows]

    def set_tags(self, tags: list[str]) -> None:
        """Replace the tag set; blank and duplicate tags are dropped."""
        cleaned = sorted({t.strip() for t in tags if t and t.strip()})
        existing = {row.tag: row for row in self.tag_rows}
        self.tag_rows = [existing.get(tag) or InspectionTag(tag=tag) for tag in cleaned]

    def snapshot(self) -> dict:
        """Plain-value view used for audit before/after records."""
        return {
            "title": self.title,
            "inspection_type": self.inspection_type.value,
            "status": self.status.value,
            "scheduled_date": self.scheduled_date.isoformat() if self.scheduled_date else None,
            "completed_date": self.completed_date.isoformat() if self.completed_date else None,
            "assigned_to_id": str(self.assigned_to_id) if self.assigned_to_id else None,
            "completed_by_id": str(self.completed_by_id) if self.completed_by_id else None,
            "findings": self.findings,
            "notes": self.notes,
            "tags": self.tags,
        }

    def __repr__(self) -> str:
        return f"<Inspection(id={self.id}, status={self.status.value})>"


class InspectionTag(Base):
    """One tag on an inspection."""

    __tablename__ = "inspection_tags"
    __table_args__ = (UniqueConstraint("inspection_id", "tag", name="uq_inspection_tag"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    inspection_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("inspections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tag: Mapped[str] = mapped_column(String(100), nullable=False, index=True)


class Finding(Base):
    """Structured observation recorded during an inspection."""

    __tablename__ = "inspection_findings"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    inspection_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("inspections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    system: Mapped[str] = mapped_column(String(100), nullable=False)
    severity: Mapped[FindingSeverity] = mapped_column(_enum(FindingSeverity), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    photo_urls: Mapped[list | None] = mapped_column(JSON, nullable=True)
    created_by_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    inspection: Mapped["Inspection"] = relationship("Inspection", back_populates="finding_items")


class Recommendation(Base):
    """Remediation suggestion generated from a finding. Append-only."""

    __tablename__ = "recommendations"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    inspection_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("inspections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    finding_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("inspection_findings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    property_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("properties.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    rule_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    estimated_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    estimated_cost_aed: Mapped[float | None] = mapped_column(Float, nullable=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")
    suggested_within_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class InspectionAttachment(Base):
    """File reference registered against an inspection."""

    __tablename__ = "inspection_attachments"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    inspection_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("inspections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    uploaded_by_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class InspectionReminder(Base):
    """Scheduled reminder about an upcoming inspection."""

    __tablename__ = "inspection_reminders"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    inspection_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("inspections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    reminder_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    channel: Mapped[str] = mapped_column(String(20), nullable=False, default="in_app")
    recipients: Mapped[list | None] = mapped_column(JSON, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
