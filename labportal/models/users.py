"""
User model - portal accounts for customers and lab administrators.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4
import enum

from sqlalchemy import String, DateTime, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from labportal.lib.clock import utcnow
from labportal.lib.db import Base, enum_column_type


class UserType(str, enum.Enum):
    """User type enumeration. Non-admin types double as pricing tiers."""
    LAB_ADMINISTRATOR = "lab_administrator"
    MJIIT_MEMBER = "mjiit_member"
    UTM_MEMBER = "utm_member"
    EXTERNAL_MEMBER = "external_member"


class UserStatus(str, enum.Enum):
    """Account status enumeration."""
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class User(Base):
    """
    User entity - represents all portal users.
    Only the fields the booking workflow reads are mapped here.
    """
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    user_type: Mapped[UserType] = mapped_column(
        enum_column_type(UserType, "user_type"),
        nullable=False,
        index=True,
    )
    status: Mapped[UserStatus] = mapped_column(
        enum_column_type(UserStatus, "user_status"),
        nullable=False,
        default=UserStatus.ACTIVE,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    @property
    def is_admin(self) -> bool:
        return self.user_type == UserType.LAB_ADMINISTRATOR

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or "Customer"

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, type={self.user_type})>"
