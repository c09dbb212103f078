"""
ReviewService - admin review of submitted bookings and customer resubmission.

Approving a booking creates its pending sample records in the same transaction.
"""
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from labportal.api.middleware.error_handler import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from labportal.lib.clock import utcnow
from labportal.lib.logging import get_logger
from labportal.lib.workflow_rules import can_transition
from labportal.models.bookings import BookingRequest, BookingStatus
from labportal.models.notifications import NotificationType
from labportal.services.audit_service import AuditLogService
from labportal.services.notification_service import (
    NotificationService,
    booking_resubmitted,
    booking_reviewed,
)
from labportal.services.sample_service import SampleService


logger = get_logger(__name__)


class ReviewAction:
    """Review action constants."""
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_REVISION = "request_revision"


# action -> (target status, notification type, notification title)
_REVIEW_OUTCOMES = {
    ReviewAction.APPROVE: (
        BookingStatus.APPROVED,
        NotificationType.BOOKING_APPROVED,
        "Booking Approved",
    ),
    ReviewAction.REJECT: (
        BookingStatus.REJECTED,
        NotificationType.BOOKING_REJECTED,
        "Booking Rejected",
    ),
    ReviewAction.REQUEST_REVISION: (
        BookingStatus.REVISION_REQUESTED,
        NotificationType.BOOKING_REVISION_REQUESTED,
        "Revision Requested",
    ),
}


class ReviewService:

    def __init__(self, db: Session, notifications: Optional[NotificationService] = None):
        self.db = db
        self.notifications = notifications or NotificationService(db)
        self.audit = AuditLogService(db)
        self.samples = SampleService(db, self.notifications)

    def _get_booking(self, booking_id: UUID) -> BookingRequest:
        booking = self.db.execute(
            select(BookingRequest)
            .options(selectinload(BookingRequest.user))
            .where(BookingRequest.id == booking_id)
        ).scalar_one_or_none()
        if not booking:
            raise NotFoundException("Booking", str(booking_id))
        return booking

    def review_booking(
        self,
        booking_id: UUID,
        admin_user_id: UUID,
        action: str,
        comment: Optional[str] = None,
    ) -> BookingRequest:
        """
        Approve, reject or send back a booking awaiting approval.

        Raises:
            NotFoundException: If the booking doesn't exist
            ValidationException: If the action is unknown or the booking isn't reviewable
        """
        if action not in _REVIEW_OUTCOMES:
            raise ValidationException(f"Unknown review action: {action}")
        target, notification_type, title = _REVIEW_OUTCOMES[action]

        booking = self._get_booking(booking_id)
        if booking.status != BookingStatus.PENDING_APPROVAL or not can_transition(booking.status, target):
            raise ValidationException(
                "Booking is not in a reviewable state",
                details={"status": booking.status.value},
            )

        try:
            booking.status = target
            booking.reviewed_at = utcnow()
            booking.reviewed_by = admin_user_id
            booking.review_notes = comment
            if action == ReviewAction.APPROVE:
                self.samples.create_samples_for_booking(booking.id)
            self.audit.record_entry(
                user_id=admin_user_id,
                action=f"booking.{action}",
                entity="booking",
                entity_id=booking.id,
                metadata={"reference_number": booking.reference_number, "comment": comment},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Booking reviewed: {action}",
            extra={"booking_id": str(booking.id), "admin_user_id": str(admin_user_id)},
        )

        self.notifications.dispatch([booking_reviewed(booking, notification_type, title, comment)])
        return booking

    def resubmit_booking(self, booking_id: UUID, user_id: UUID) -> BookingRequest:
        """
        Send a revised booking back for approval.

        Raises:
            NotFoundException: If the booking doesn't exist
            ForbiddenException: If the caller doesn't own the booking
            ValidationException: If no revision was requested
        """
        booking = self._get_booking(booking_id)

        if booking.user_id != user_id:
            raise ForbiddenException("You can only resubmit your own bookings")
        if booking.status != BookingStatus.REVISION_REQUESTED:
            raise ValidationException("Only bookings awaiting revision can be resubmitted")

        try:
            booking.status = BookingStatus.PENDING_APPROVAL
            self.audit.record_entry(
                user_id=user_id,
                action="booking.resubmit",
                entity="booking",
                entity_id=booking.id,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Booking resubmitted", extra={"booking_id": str(booking.id)})

        self.notifications.dispatch([booking_resubmitted(booking, booking.user.display_name)])
        return booking
