"""
SQLAlchemy models package.
Import all models here to ensure they're registered with Base.metadata.
"""
from labportal.models.users import User, UserType, UserStatus
from labportal.models.services import Service, ServicePricing
from labportal.models.bookings import BookingRequest, BookingServiceItem, BookingStatus, WorkspaceBooking
from labportal.models.samples import SampleTracking, SampleStatus
from labportal.models.modifications import SampleModification, ModificationStatus, ModificationInitiator
from labportal.models.notifications import Notification, NotificationType
from labportal.models.audit_logs import AuditLog

__all__ = [
    "User",
    "UserType",
    "UserStatus",
    "Service",
    "ServicePricing",
    "BookingRequest",
    "BookingServiceItem",
    "BookingStatus",
    "WorkspaceBooking",
    "SampleTracking",
    "SampleStatus",
    "SampleModification",
    "ModificationStatus",
    "ModificationInitiator",
    "Notification",
    "NotificationType",
    "AuditLog",
]
