"""
CancellationService - user and admin cancellation, and timeline edits.

Users may cancel their own bookings up to completion. Administrators may
cancel any booking that is not already cancelled, completed ones included.
"""
from datetime import date
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
from labportal.services.audit_service import AuditLogService
from labportal.services.notification_service import (
    NotificationService,
    booking_cancelled_admin_alert,
    booking_cancelled_by_admin,
    booking_cancelled_by_user_confirmation,
)


logger = get_logger(__name__)


class CancellationService:

    def __init__(self, db: Session, notifications: Optional[NotificationService] = None):
        self.db = db
        self.notifications = notifications or NotificationService(db)
        self.audit = AuditLogService(db)

    def _get_booking(self, booking_id: UUID) -> BookingRequest:
        booking = self.db.execute(
            select(BookingRequest)
            .options(selectinload(BookingRequest.user))
            .where(BookingRequest.id == booking_id)
        ).scalar_one_or_none()
        if not booking:
            raise NotFoundException("Booking", str(booking_id))
        return booking

    def cancel_booking_by_user(
        self,
        booking_id: UUID,
        user_id: UUID,
        reason: Optional[str] = None,
    ) -> BookingRequest:
        """
        Cancel a booking as its owner.

        Raises:
            NotFoundException: If the booking doesn't exist
            ForbiddenException: If the caller doesn't own the booking
            ValidationException: If the booking is cancelled or completed
        """
        booking = self._get_booking(booking_id)

        if booking.user_id != user_id:
            raise ForbiddenException("You can only cancel your own bookings")
        if booking.status == BookingStatus.CANCELLED:
            raise ValidationException("Booking is already cancelled")
        if booking.status == BookingStatus.COMPLETED:
            raise ValidationException("Cannot cancel a completed booking")

        previous = booking.status
        try:
            booking.status = BookingStatus.CANCELLED
            booking.reviewed_at = utcnow()
            booking.reviewed_by = user_id
            booking.review_notes = (
                f"User cancellation: {reason}" if reason else "Booking cancelled by user"
            )
            self.audit.record_entry(
                user_id=user_id,
                action="booking_cancelled_by_user",
                entity="booking",
                entity_id=booking.id,
                metadata={
                    "reference_number": booking.reference_number,
                    "previous_status": previous.value,
                    "reason": reason,
                },
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Booking cancelled by user",
            extra={"booking_id": str(booking.id), "previous_status": previous.value},
        )

        self.notifications.dispatch([
            booking_cancelled_by_user_confirmation(booking, reason),
            booking_cancelled_admin_alert(booking, booking.user.display_name, reason),
        ])
        return booking

    def cancel_booking_by_admin(
        self,
        booking_id: UUID,
        admin_user_id: UUID,
        reason: Optional[str] = None,
    ) -> BookingRequest:
        """
        Cancel any booking that is not already cancelled.

        Raises:
            NotFoundException: If the booking doesn't exist
            ValidationException: If the booking is already cancelled
        """
        booking = self._get_booking(booking_id)

        if not can_transition(booking.status, BookingStatus.CANCELLED, admin_override=True):
            raise ValidationException("Booking is already cancelled")

        previous = booking.status
        try:
            booking.status = BookingStatus.CANCELLED
            booking.reviewed_at = utcnow()
            booking.reviewed_by = admin_user_id
            booking.review_notes = (
                f"Cancellation reason: {reason}" if reason else "Booking cancelled by administrator"
            )
            self.audit.record_entry(
                user_id=admin_user_id,
                action="booking_cancelled_by_admin",
                entity="booking",
                entity_id=booking.id,
                metadata={
                    "reference_number": booking.reference_number,
                    "previous_status": previous.value,
                    "target_user_id": booking.user_id,
                    "reason": reason,
                },
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Booking cancelled by admin",
            extra={
                "booking_id": str(booking.id),
                "admin_user_id": str(admin_user_id),
                "previous_status": previous.value,
            },
        )

        self.notifications.dispatch([booking_cancelled_by_admin(booking, reason)])
        return booking

    def update_booking_timeline(
        self,
        booking_id: UUID,
        preferred_start_date: Optional[date],
        preferred_end_date: Optional[date],
        updated_by: Optional[UUID] = None,
        is_admin: bool = False,
    ) -> BookingRequest:
        """
        Overwrite the preferred start/end dates. Either may be cleared with None.

        Raises:
            NotFoundException: If the booking doesn't exist
            ForbiddenException: If updated_by is neither the owner nor an admin
            ValidationException: If the booking is cancelled or start is after end
        """
        booking = self._get_booking(booking_id)

        if updated_by is not None and not is_admin and booking.user_id != updated_by:
            raise ForbiddenException("You can only edit your own bookings")
        if booking.status == BookingStatus.CANCELLED:
            raise ValidationException("Cannot edit a cancelled booking")
        if (
            preferred_start_date is not None
            and preferred_end_date is not None
            and preferred_start_date > preferred_end_date
        ):
            raise ValidationException("Start date must be on or before end date")

        previous = {
            "preferred_start_date": booking.preferred_start_date,
            "preferred_end_date": booking.preferred_end_date,
        }
        try:
            booking.preferred_start_date = preferred_start_date
            booking.preferred_end_date = preferred_end_date
            if updated_by is not None:
                self.audit.record_entry(
                    user_id=updated_by,
                    action="booking_timeline_updated",
                    entity="booking",
                    entity_id=booking.id,
                    metadata={
                        "previous": previous,
                        "preferred_start_date": preferred_start_date,
                        "preferred_end_date": preferred_end_date,
                    },
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Booking timeline updated", extra={"booking_id": str(booking.id)})
        return booking
