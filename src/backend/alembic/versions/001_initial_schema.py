"""Initial inspection lifecycle schema

Revision ID: 001
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Define enum types
subscriptionstatus_enum = postgresql.ENUM(
    "trial", "active", "past_due", "cancelled",
    name="subscriptionstatus",
    create_type=False,
)
userrole_enum = postgresql.ENUM(
    "admin", "property_manager", "owner", "technician", "tenant",
    name="userrole",
    create_type=False,
)
inspectiontype_enum = postgresql.ENUM(
    "routine", "move_in", "move_out", "emergency", "compliance",
    name="inspectiontype",
    create_type=False,
)
inspectionstatus_enum = postgresql.ENUM(
    "scheduled", "in_progress", "completed", "cancelled",
    name="inspectionstatus",
    create_type=False,
)
findingseverity_enum = postgresql.ENUM(
    "low", "medium", "high", "critical",
    name="findingseverity",
    create_type=False,
)
jobpriority_enum = postgresql.ENUM(
    "low", "medium", "high", "urgent",
    name="jobpriority",
    create_type=False,
)
jobstatus_enum = postgresql.ENUM(
    "open", "assigned", "in_progress", "completed", "cancelled",
    name="jobstatus",
    create_type=False,
)
auditaction_enum = postgresql.ENUM(
    "inspection_created", "inspection_updated", "inspection_deleted",
    "inspection_started", "inspection_cancelled", "inspection_completed",
    "finding_added", "finding_deleted",
    "attachment_added", "attachment_deleted",
    "reminder_created",
    "job_created",
    name="auditaction",
    create_type=False,
)

ENUMS = [
    subscriptionstatus_enum,
    userrole_enum,
    inspectiontype_enum,
    inspectionstatus_enum,
    findingseverity_enum,
    jobpriority_enum,
    jobstatus_enum,
    auditaction_enum,
]


def _uuid(name: str, fk: str | None = None, ondelete: str | None = None, nullable: bool = True, index: bool = False):
    args = [sa.ForeignKey(fk, ondelete=ondelete)] if fk else []
    return sa.Column(name, postgresql.UUID(as_uuid=True), *args, nullable=nullable, index=index)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    for enum in ENUMS:
        enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "organizations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("subscription_status", subscriptionstatus_enum, nullable=False, server_default="trial"),
        *_timestamps(),
    )

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("role", userrole_enum, nullable=False, server_default="tenant"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        _uuid("org_id", "organizations.id", index=True),
        *_timestamps(),
    )

    op.create_table(
        "properties",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _uuid("org_id", "organizations.id", "CASCADE", nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("address", sa.String(500), nullable=True),
        _uuid("manager_id", "users.id", "SET NULL", index=True),
        sa.Column("health_score", sa.Integer, nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "property_owners",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _uuid("property_id", "properties.id", "CASCADE", nullable=False, index=True),
        _uuid("owner_id", "users.id", "CASCADE", nullable=False, index=True),
        sa.UniqueConstraint("property_id", "owner_id", name="uq_property_owner"),
    )

    op.create_table(
        "units",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _uuid("property_id", "properties.id", "CASCADE", nullable=False, index=True),
        sa.Column("unit_number", sa.String(50), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "unit_tenants",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _uuid("unit_id", "units.id", "CASCADE", nullable=False, index=True),
        _uuid("tenant_id", "users.id", "CASCADE", nullable=False, index=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "inspections",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _uuid("org_id", "organizations.id", "CASCADE", nullable=False, index=True),
        _uuid("property_id", "properties.id", "CASCADE", nullable=False, index=True),
        _uuid("unit_id", "units.id", "CASCADE", index=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("inspection_type", inspectiontype_enum, nullable=False, server_default="routine"),
        sa.Column("status", inspectionstatus_enum, nullable=False, server_default="scheduled", index=True),
        sa.Column("scheduled_date", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("completed_date", sa.DateTime(timezone=True), nullable=True),
        _uuid("assigned_to_id", "users.id", "SET NULL", index=True),
        _uuid("completed_by_id", "users.id", "SET NULL"),
        _uuid("created_by_id", "users.id", "SET NULL"),
        sa.Column("findings", sa.Text, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "inspection_tags",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _uuid("inspection_id", "inspections.id", "CASCADE", nullable=False, index=True),
        sa.Column("tag", sa.String(100), nullable=False, index=True),
        sa.UniqueConstraint("inspection_id", "tag", name="uq_inspection_tag"),
    )

    op.create_table(
        "inspection_findings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _uuid("inspection_id", "inspections.id", "CASCADE", nullable=False, index=True),
        sa.Column("system", sa.String(100), nullable=False),
        sa.Column("severity", findingseverity_enum, nullable=False),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("photo_urls", postgresql.JSONB, nullable=True),
        _uuid("created_by_id", "users.id", "SET NULL"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "recommendations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _uuid("inspection_id", "inspections.id", "CASCADE", nullable=False, index=True),
        _uuid("finding_id", "inspection_findings.id", "CASCADE", nullable=False, index=True),
        _uuid("property_id", "properties.id", "CASCADE", nullable=False, index=True),
        sa.Column("rule_id", sa.String(100), nullable=True),
        sa.Column("summary", sa.Text, nullable=False),
        sa.Column("estimated_hours", sa.Float, nullable=True),
        sa.Column("estimated_cost_aed", sa.Float, nullable=True),
        sa.Column("priority", sa.String(20), nullable=False, server_default="medium"),
        sa.Column("suggested_within_days", sa.Integer, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "inspection_attachments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _uuid("inspection_id", "inspections.id", "CASCADE", nullable=False, index=True),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("file_type", sa.String(100), nullable=False),
        sa.Column("file_url", sa.String(1000), nullable=False),
        sa.Column("size", sa.Integer, nullable=True),
        _uuid("uploaded_by_id", "users.id", "SET NULL"),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "inspection_reminders",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _uuid("inspection_id", "inspections.id", "CASCADE", nullable=False, index=True),
        _uuid("user_id", "users.id", "SET NULL"),
        sa.Column("reminder_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("channel", sa.String(20), nullable=False, server_default="in_app"),
        sa.Column("recipients", postgresql.JSONB, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _uuid("org_id", "organizations.id", "CASCADE", nullable=False, index=True),
        _uuid("property_id", "properties.id", "CASCADE", nullable=False, index=True),
        _uuid("unit_id", "units.id", "SET NULL"),
        _uuid("inspection_id", "inspections.id", "SET NULL", index=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("priority", jobpriority_enum, nullable=False, server_default="medium"),
        sa.Column("status", jobstatus_enum, nullable=False, server_default="open", index=True),
        _uuid("assigned_to_id", "users.id", "SET NULL"),
        _uuid("created_by_id", "users.id", "SET NULL"),
        *_timestamps(),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("action", auditaction_enum, nullable=False, index=True),
        _uuid("user_id", "users.id", "SET NULL", index=True),
        sa.Column("entity_type", sa.String(50), nullable=False, index=True),
        sa.Column("entity_id", sa.String(50), nullable=False, index=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("old_values", postgresql.JSONB, nullable=True),
        sa.Column("new_values", postgresql.JSONB, nullable=True),
        sa.Column("extra_data", postgresql.JSONB, nullable=True),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("ix_audit_logs_timestamp_action", "audit_logs", ["timestamp", "action"])

    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _uuid("user_id", "users.id", "CASCADE", nullable=False, index=True),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=True),
        sa.Column("entity_id", sa.String(50), nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_index("ix_audit_logs_timestamp_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("jobs")
    op.drop_table("inspection_reminders")
    op.drop_table("inspection_attachments")
    op.drop_table("recommendations")
    op.drop_table("inspection_findings")
    op.drop_table("inspection_tags")
    op.drop_table("inspections")
    op.drop_table("unit_tenants")
    op.drop_table("units")
    op.drop_table("property_owners")
    op.drop_table("properties")
    op.drop_table("users")
    op.drop_table("organizations")

    for enum in reversed(ENUMS):
        enum.drop(op.get_bind(), checkfirst=True)
