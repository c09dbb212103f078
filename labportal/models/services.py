"""
Service catalogue models - lab services and their per-tier pricing.
"""
from decimal import Decimal
from typing import List
from uuid import UUID, uuid4

from sqlalchemy import String, Boolean, Numeric, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from labportal.lib.db import Base, enum_column_type
from labportal.models.users import UserType


class Service(Base):
    """
    Service entity - an analytical service or workspace offering.
    """
    __tablename__ = "services"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    requires_sample: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether booking this service produces sample tracking rows",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    pricing: Mapped[List["ServicePricing"]] = relationship(
        back_populates="service",
        cascade="all, delete-orphan",
    )

    def price_for(self, user_type: UserType):
        """Return the pricing row for a user type tier, or None."""
        for row in self.pricing:
            if row.user_type == user_type:
                return row
        return None

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, code={self.code}, requires_sample={self.requires_sample})>"


class ServicePricing(Base):
    """Unit price of a service for one user type tier."""
    __tablename__ = "service_pricing"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    service_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("services.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_type: Mapped[UserType] = mapped_column(
        enum_column_type(UserType, "user_type"),
        nullable=False,
    )
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    unit: Mapped[str] = mapped_column(String(30), nullable=False, default="sample")

    service: Mapped[Service] = relationship(back_populates="pricing")

    __table_args__ = (
        UniqueConstraint("service_id", "user_type", name="uq_service_pricing_tier"),
    )
