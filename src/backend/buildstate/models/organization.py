"""Organization model: the tenant boundary."""

import uuid
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import String, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from buildstate.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from buildstate.models.user import User
    from buildstate.models.property import Property


class SubscriptionStatus(str, Enum):
    """Billing state as reported by the subscription service."""

    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


class Organization(Base, TimestampMixin):
    """A property-management company; every record belongs to one."""

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        SQLEnum(SubscriptionStatus, values_callable=lambda x: [e.value for e in x]),
        default=SubscriptionStatus.TRIAL,
        nullable=False,
    )

    users: Mapped[list["User"]] = relationship("User", back_populates="organization")
    properties: Mapped[list["Property"]] = relationship("Property", back_populates="organization")

    @property
    def has_active_subscription(self) -> bool:
        return self.subscription_status in (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE)

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name})>"
