"""
Booking models - booking requests, their service line items, and workspace slots.
"""
from datetime import datetime, date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID, uuid4
import enum

from sqlalchemy import String, Text, Integer, Numeric, Date, DateTime, ForeignKey, CheckConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from labportal.lib.clock import utcnow
from labportal.lib.db import Base, enum_column_type
from labportal.models.services import Service
from labportal.models.users import User


class BookingStatus(str, enum.Enum):
    """
    Booking status state machine.
    Happy path: draft → pending_approval → approved → in_progress → completed.
    Allowed moves are listed in labportal.lib.workflow_rules.BOOKING_TRANSITIONS.
    """
    DRAFT = "draft"
    PENDING_USER_VERIFICATION = "pending_user_verification"
    PENDING_APPROVAL = "pending_approval"
    REVISION_REQUESTED = "revision_requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BookingRequest(Base):
    """
    Booking request - the aggregate root of a customer's service request.
    """
    __tablename__ = "booking_requests"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reference_number: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
    )
    status: Mapped[BookingStatus] = mapped_column(
        enum_column_type(BookingStatus, "booking_status"),
        nullable=False,
        default=BookingStatus.DRAFT,
        index=True,
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    # Schedule requested by the customer
    preferred_start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    preferred_end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Review
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Stamped the first time the booking completes
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    user: Mapped[User] = relationship(foreign_keys=[user_id])
    service_items: Mapped[List["BookingServiceItem"]] = relationship(
        back_populates="booking_request",
        cascade="all, delete-orphan",
    )
    workspace_bookings: Mapped[List["WorkspaceBooking"]] = relationship(
        back_populates="booking_request",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<BookingRequest(id={self.id}, ref={self.reference_number}, status={self.status})>"


class BookingServiceItem(Base):
    """One priced line within a booking."""
    __tablename__ = "booking_service_items"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    booking_request_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("booking_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("services.id", ondelete="RESTRICT"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    duration_months: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    booking_request: Mapped[BookingRequest] = relationship(back_populates="service_items")
    service: Mapped[Service] = relationship()
    sample_tracking: Mapped[List["SampleTracking"]] = relationship(  # noqa: F821
        back_populates="booking_service_item",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="service_item_quantity_positive"),
    )


class WorkspaceBooking(Base):
    """A reserved slot of physical lab workspace."""
    __tablename__ = "workspace_bookings"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    booking_request_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("booking_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    booking_request: Mapped[BookingRequest] = relationship(back_populates="workspace_bookings")

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="workspace_end_after_start"),
    )
