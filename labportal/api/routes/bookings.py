"""
Customer booking routes.

Routes:
- POST /bookings/{booking_id}/cancel - Cancel own booking
- PATCH /bookings/{booking_id}/timeline - Change preferred dates
- POST /bookings/{booking_id}/resubmit - Resubmit after a revision request
"""
from datetime import date, datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from labportal.api.dependencies import get_current_user, get_db, get_notification_service
from labportal.models.bookings import BookingRequest, BookingStatus
from labportal.models.users import User
from labportal.services.cancellation_service import CancellationService
from labportal.services.notification_service import NotificationService
from labportal.services.review_service import ReviewService


# Pydantic schemas
class BookingResponse(BaseModel):
    """Booking summary returned by every booking workflow route."""
    id: UUID
    reference_number: str
    user_id: UUID
    status: BookingStatus
    total_amount: float
    preferred_start_date: Optional[date] = None
    preferred_end_date: Optional[date] = None
    review_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[UUID] = None
    released_at: Optional[datetime] = None


class CancelBookingRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000, description="Why the booking is cancelled")


class UpdateTimelineRequest(BaseModel):
    preferred_start_date: Optional[date] = None
    preferred_end_date: Optional[date] = None


def to_booking_response(booking: BookingRequest) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        reference_number=booking.reference_number,
        user_id=booking.user_id,
        status=booking.status,
        total_amount=float(booking.total_amount),
        preferred_start_date=booking.preferred_start_date,
        preferred_end_date=booking.preferred_end_date,
        review_notes=booking.review_notes,
        reviewed_at=booking.reviewed_at,
        reviewed_by=booking.reviewed_by,
        released_at=booking.released_at,
    )


# Router
router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: UUID,
    payload: CancelBookingRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
) -> BookingResponse:
    """
    Cancel one of the caller's bookings.

    Completed bookings cannot be cancelled by their owner.
    """
    service = CancellationService(db, notifications)
    booking = service.cancel_booking_by_user(booking_id, user.id, payload.reason)
    return to_booking_response(booking)


@router.patch("/{booking_id}/timeline", response_model=BookingResponse)
def update_timeline(
    booking_id: UUID,
    payload: UpdateTimelineRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> BookingResponse:
    """Overwrite the preferred start/end dates of the caller's booking."""
    service = CancellationService(db)
    booking = service.update_booking_timeline(
        booking_id,
        payload.preferred_start_date,
        payload.preferred_end_date,
        updated_by=user.id,
        is_admin=user.is_admin,
    )
    return to_booking_response(booking)


@router.post("/{booking_id}/resubmit", response_model=BookingResponse)
def resubmit_booking(
    booking_id: UUID,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
) -> BookingResponse:
    """Send a booking back for approval after the lab requested a revision."""
    booking = ReviewService(db, notifications).resubmit_booking(booking_id, user.id)
    return to_booking_response(booking)
