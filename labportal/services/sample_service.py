"""
SampleService - sample record creation and lab-side status updates.

Every status change is followed by a lifecycle recompute of the parent
booking, which is what moves bookings into in_progress and completed.
"""
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from labportal.api.middleware.error_handler import NotFoundException
from labportal.lib.clock import utcnow
from labportal.lib.logging import get_logger
from labportal.models.bookings import BookingServiceItem
from labportal.models.samples import STATUS_TIMESTAMP_FIELDS, SampleStatus, SampleTracking
from labportal.models.services import Service
from labportal.services.lifecycle_service import LifecycleService, RecomputeResult
from labportal.services.notification_service import NotificationService


logger = get_logger(__name__)


class SampleService:

    def __init__(self, db: Session, notifications: Optional[NotificationService] = None):
        self.db = db
        self.lifecycle = LifecycleService(db, notifications)

    def create_samples_for_booking(self, booking_id: UUID) -> List[SampleTracking]:
        """
        Add pending sample records for every sample-tracked service item.

        One sample per quantity unit. Items that already have samples are
        only topped up to their quantity, so calling this twice is safe.
        Does not commit; the caller owns the transaction.
        """
        existing = (
            select(func.count(SampleTracking.id))
            .where(SampleTracking.booking_service_item_id == BookingServiceItem.id)
            .correlate(BookingServiceItem)
            .scalar_subquery()
        )
        rows = self.db.execute(
            select(BookingServiceItem, existing)
            .join(Service, BookingServiceItem.service_id == Service.id)
            .where(
                BookingServiceItem.booking_request_id == booking_id,
                Service.requires_sample.is_(True),
            )
        ).all()

        created: List[SampleTracking] = []
        for item, count in rows:
            prefix = f"SAMPLE-{str(item.id)[:8].upper()}"
            for n in range(count + 1, item.quantity + 1):
                sample = SampleTracking(sample_identifier=f"{prefix}-{n}", status=SampleStatus.PENDING)
                item.sample_tracking.append(sample)
                created.append(sample)

        self.db.flush()
        logger.info(
            "Samples created for booking",
            extra={"booking_id": str(booking_id), "created": len(created)},
        )
        return created

    def update_sample_status(
        self,
        sample_id: UUID,
        status: SampleStatus,
        updated_by: Optional[UUID] = None,
    ) -> Tuple[SampleTracking, RecomputeResult]:
        """
        Move a sample to a new status and recompute its booking.

        Raises:
            NotFoundException: If the sample doesn't exist
        """
        sample = self.db.get(SampleTracking, sample_id)
        if not sample:
            raise NotFoundException("Sample", str(sample_id))

        previous = sample.status
        try:
            sample.status = status
            sample.updated_by = updated_by
            timestamp_field = STATUS_TIMESTAMP_FIELDS.get(status)
            if timestamp_field:
                setattr(sample, timestamp_field, utcnow())
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Sample status updated: {previous.value} -> {status.value}",
            extra={"sample_id": str(sample.id), "sample_identifier": sample.sample_identifier},
        )

        item = self.db.get(BookingServiceItem, sample.booking_service_item_id)
        result = self.lifecycle.recompute_booking_status(item.booking_request_id)
        return sample, result
