"""
Sample modification model - a proposed quantity change to a service item
that the counterparty must approve before pricing changes.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4
import enum

from sqlalchemy import Text, Integer, Numeric, DateTime, ForeignKey, Index, CheckConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from labportal.lib.clock import utcnow
from labportal.lib.db import Base, enum_column_type
from labportal.models.bookings import BookingServiceItem


class ModificationStatus(str, enum.Enum):
    """pending → approved | rejected; both resolutions are terminal."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ModificationInitiator(str, enum.Enum):
    """Which side of the booking proposed the change."""
    ADMIN = "admin"
    CUSTOMER = "customer"


class SampleModification(Base):
    """
    Modification request for a booking service item.
    At most one pending request per service item (partial unique index).
    """
    __tablename__ = "sample_modifications"

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

    # Snapshot of the item when the request was made, and the proposal
    original_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    new_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    original_total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    new_total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[ModificationStatus] = mapped_column(
        enum_column_type(ModificationStatus, "modification_status"),
        nullable=False,
        default=ModificationStatus.PENDING,
    )
    initiated_by: Mapped[ModificationInitiator] = mapped_column(
        enum_column_type(ModificationInitiator, "modification_initiator"),
        nullable=False,
    )
    created_by: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    approved_by: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    response_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    booking_service_item: Mapped[BookingServiceItem] = relationship()

    __table_args__ = (
        Index(
            "uq_sample_modification_pending_per_item",
            "booking_service_item_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        CheckConstraint("new_quantity >= 1", name="modification_quantity_positive"),
    )

    @property
    def price_difference(self) -> Decimal:
        return self.new_total_price - self.original_total_price

    def __repr__(self) -> str:
        return (
            f"<SampleModification(id={self.id}, item={self.booking_service_item_id}, "
            f"{self.original_quantity}->{self.new_quantity}, status={self.status})>"
        )
