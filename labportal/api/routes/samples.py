"""
Admin sample tracking routes.

Routes:
- PATCH /admin/samples/{sample_id}/status - Move a sample and recompute its booking
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from labportal.api.dependencies import get_db, get_notification_service, require_admin
from labportal.models.bookings import BookingStatus
from labportal.models.samples import SampleStatus
from labportal.models.users import User
from labportal.services.notification_service import NotificationService
from labportal.services.sample_service import SampleService


router = APIRouter(prefix="/admin/samples", tags=["admin_samples"])


class SampleStatusRequest(BaseModel):
    status: SampleStatus


class SampleStatusResponse(BaseModel):
    sample_id: UUID
    sample_identifier: str
    status: SampleStatus
    booking_id: UUID
    booking_status: BookingStatus
    booking_status_changed: bool
    released_at: Optional[str] = None


@router.patch("/{sample_id}/status", response_model=SampleStatusResponse)
def update_sample_status(
    sample_id: UUID,
    payload: SampleStatusRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
) -> SampleStatusResponse:
    """
    Update a sample's status.

    The parent booking is recomputed afterwards and may move to
    in_progress or completed.
    """
    sample, result = SampleService(db, notifications).update_sample_status(
        sample_id, payload.status, admin.id
    )
    return SampleStatusResponse(
        sample_id=sample.id,
        sample_identifier=sample.sample_identifier,
        status=sample.status,
        booking_id=result.booking_id,
        booking_status=result.new_status,
        booking_status_changed=result.changed,
        released_at=result.released_at.isoformat() if result.released_at else None,
    )
