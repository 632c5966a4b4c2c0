"""Buildstate database models."""

from buildstate.models.base import Base, TimestampMixin
from buildstate.models.organization import Organization, SubscriptionStatus
from buildstate.models.user import User, UserRole
from buildstate.models.property import Property, PropertyOwner, Unit, UnitTenant
from buildstate.models.inspection import (
    Inspection,
    InspectionType,
    InspectionStatus,
    InspectionTag,
    Finding,
    FindingSeverity,
    Recommendation,
    InspectionAttachment,
    InspectionReminder,
)
from buildstate.models.job import Job, JobPriority, JobStatus
from buildstate.models.audit import AuditLog, AuditAction
from buildstate.models.notification import Notification

__all__ = [
    "Base",
    "TimestampMixin",
    "Organization",
    "SubscriptionStatus",
    "User",
    "UserRole",
    "Property",
    "PropertyOwner",
    "Unit",
    "UnitTenant",
    "Inspection",
    "InspectionType",
    "InspectionStatus",
    "InspectionTag",
    "Finding",
    "FindingSeverity",
    "Recommendation",
    "InspectionAttachment",
    "InspectionReminder",
    "Job",
    "JobPriority",
    "JobStatus",
    "AuditLog",
    "AuditAction",
    "Notification",
]
