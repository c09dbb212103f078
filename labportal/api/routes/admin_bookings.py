"""
Admin booking routes - review, cancellation, completion and recompute.

Routes:
- POST /admin/bookings/{booking_id}/approve
- POST /admin/bookings/{booking_id}/reject
- POST /admin/bookings/{booking_id}/request-revision
- POST /admin/bookings/{booking_id}/cancel
- POST /admin/bookings/{booking_id}/force-complete
- POST /admin/bookings/{booking_id}/recompute
- PATCH /admin/bookings/{booking_id}/timeline
"""
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from labportal.api.dependencies import get_db, get_notification_service, require_admin
from labportal.api.routes.bookings import (
    BookingResponse,
    CancelBookingRequest,
    UpdateTimelineRequest,
    to_booking_response,
)
from labportal.models.bookings import BookingStatus
from labportal.models.users import User
from labportal.services.cancellation_service import CancellationService
from labportal.services.lifecycle_service import LifecycleService, RecomputeResult
from labportal.services.notification_service import NotificationService
from labportal.services.review_service import ReviewAction, ReviewService


router = APIRouter(prefix="/admin/bookings", tags=["admin_bookings"])


# Request/Response Models
class ReviewRequest(BaseModel):
    comment: Optional[str] = Field(None, max_length=2000, description="Shown to the customer")


class ForceCompleteRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class RecomputeResponse(BaseModel):
    """Lifecycle recompute outcome."""
    booking_id: UUID
    previous_status: BookingStatus
    new_status: BookingStatus
    changed: bool
    released_at: Optional[datetime] = None


def to_recompute_response(result: RecomputeResult) -> RecomputeResponse:
    return RecomputeResponse(
        booking_id=result.booking_id,
        previous_status=result.previous_status,
        new_status=result.new_status,
        changed=result.changed,
        released_at=result.released_at,
    )


def _review(
    booking_id: UUID,
    action: str,
    payload: ReviewRequest,
    admin: User,
    db: Session,
    notifications: NotificationService,
) -> BookingResponse:
    booking = ReviewService(db, notifications).review_booking(
        booking_id, admin.id, action, payload.comment
    )
    return to_booking_response(booking)


# Routes
@router.post("/{booking_id}/approve", response_model=BookingResponse)
def approve_booking(
    booking_id: UUID,
    payload: ReviewRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
) -> BookingResponse:
    return _review(booking_id, ReviewAction.APPROVE, payload, admin, db, notifications)


@router.post("/{booking_id}/reject", response_model=BookingResponse)
def reject_booking(
    booking_id: UUID,
    payload: ReviewRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
) -> BookingResponse:
    return _review(booking_id, ReviewAction.REJECT, payload, admin, db, notifications)


@router.post("/{booking_id}/request-revision", response_model=BookingResponse)
def request_revision(
    booking_id: UUID,
    payload: ReviewRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
) -> BookingResponse:
    return _review(booking_id, ReviewAction.REQUEST_REVISION, payload, admin, db, notifications)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: UUID,
    payload: CancelBookingRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
) -> BookingResponse:
    """
    Cancel any booking that is not already cancelled, including completed ones.
    """
    booking = CancellationService(db, notifications).cancel_booking_by_admin(
        booking_id, admin.id, payload.reason
    )
    return to_booking_response(booking)


@router.post("/{booking_id}/force-complete", response_model=RecomputeResponse)
def force_complete_booking(
    booking_id: UUID,
    payload: ForceCompleteRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
) -> RecomputeResponse:
    """Mark a booking completed regardless of sample progress."""
    result = LifecycleService(db, notifications).force_complete_booking(
        booking_id, admin.id, payload.reason
    )
    return to_recompute_response(result)


@router.post("/{booking_id}/recompute", response_model=RecomputeResponse)
def recompute_booking(
    booking_id: UUID,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
) -> RecomputeResponse:
    """Re-derive the booking status from its samples and workspace slots."""
    result = LifecycleService(db, notifications).recompute_booking_status(booking_id)
    return to_recompute_response(result)


@router.patch("/{booking_id}/timeline", response_model=BookingResponse)
def update_timeline(
    booking_id: UUID,
    payload: UpdateTimelineRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> BookingResponse:
    booking = CancellationService(db).update_booking_timeline(
        booking_id,
        payload.preferred_start_date,
        payload.preferred_end_date,
        updated_by=admin.id,
        is_admin=True,
    )
    return to_booking_response(booking)
