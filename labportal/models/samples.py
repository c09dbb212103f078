"""
Sample tracking model - lab-processing state of a physical sample.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4
import enum

from sqlalchemy import String, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from labportal.lib.clock import utcnow
from labportal.lib.db import Base, enum_column_type
from labportal.models.bookings import BookingServiceItem


class SampleStatus(str, enum.Enum):
    """Sample lifecycle: pending → received → in_analysis → analysis_complete / returned."""
    PENDING = "pending"
    RECEIVED = "received"
    IN_ANALYSIS = "in_analysis"
    RETURN_REQUESTED = "return_requested"
    ANALYSIS_COMPLETE = "analysis_complete"
    RETURNED = "returned"


# Timestamp column stamped when a sample enters each status
STATUS_TIMESTAMP_FIELDS = {
    SampleStatus.RECEIVED: "received_at",
    SampleStatus.IN_ANALYSIS: "analysis_start_at",
    SampleStatus.ANALYSIS_COMPLETE: "analysis_complete_at",
    SampleStatus.RETURN_REQUESTED: "return_requested_at",
    SampleStatus.RETURNED: "returned_at",
}


class SampleTracking(Base):
    """Tracking record for one physical sample of a service item."""
    __tablename__ = "sample_tracking"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    booking_service_item_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("booking_service_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sample_identifier: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    status: Mapped[SampleStatus] = mapped_column(
        enum_column_type(SampleStatus, "sample_status"),
        nullable=False,
        default=SampleStatus.PENDING,
        index=True,
    )
    updated_by: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    analysis_start_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    analysis_complete_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    return_requested_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    returned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    booking_service_item: Mapped[BookingServiceItem] = relationship(back_populates="sample_tracking")

    def __repr__(self) -> str:
        return f"<SampleTracking(id={self.id}, identifier={self.sample_identifier}, status={self.status})>"
