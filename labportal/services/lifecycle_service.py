"""
LifecycleService - derives a booking's aggregate status from its lab work.

A booking moves approved → in_progress → completed on its own as samples
progress and workspace slots end. Nothing else sets in_progress/completed
except the admin force-complete override.

Used by: sample status updates, the admin recompute endpoint and the
workspace completion job.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from labportal.api.middleware.error_handler import NotFoundException
from labportal.lib.clock import ensure_utc, utcnow
from labportal.lib.logging import get_logger
from labportal.lib.workflow_rules import (
    ACTIVE_SAMPLE_STATUSES,
    RECOMPUTABLE_BOOKING_STATUSES,
    TERMINAL_SAMPLE_STATUSES,
)
from labportal.models.bookings import (
    BookingRequest,
    BookingServiceItem,
    BookingStatus,
    WorkspaceBooking,
)
from labportal.models.samples import SampleStatus, SampleTracking
from labportal.models.services import Service
from labportal.services.audit_service import AuditLogService
from labportal.services.notification_service import (
    NotificationEvent,
    NotificationService,
    booking_completed,
)


logger = get_logger(__name__)


@dataclass
class RecomputeResult:
    """Outcome of one recompute or force-complete call."""
    booking_id: UUID
    previous_status: BookingStatus
    new_status: BookingStatus
    changed: bool
    released_at: Optional[datetime] = None
    events: List[NotificationEvent] = field(default_factory=list)


def derive_booking_status(
    sample_statuses: Iterable[SampleStatus],
    workspace_end_dates: Iterable[datetime],
    now: datetime,
) -> BookingStatus:
    """
    Derive the status an approved/in-progress booking should be in.

    - No tracked samples: completed once at least one workspace slot exists
      and every slot has ended, otherwise approved.
    - All samples terminal: completed.
    - Any sample active: in_progress.
    - Otherwise (some still pending): approved.
    """
    statuses = list(sample_statuses)

    if not statuses:
        end_dates = [ensure_utc(d) for d in workspace_end_dates]
        if end_dates and all(d <= now for d in end_dates):
            return BookingStatus.COMPLETED
        return BookingStatus.APPROVED

    if all(s in TERMINAL_SAMPLE_STATUSES for s in statuses):
        return BookingStatus.COMPLETED
    if any(s in ACTIVE_SAMPLE_STATUSES for s in statuses):
        return BookingStatus.IN_PROGRESS
    return BookingStatus.APPROVED


class LifecycleService:
    """
    Booking lifecycle engine.

    Each public method commits its own transaction and then dispatches the
    resulting notification events best effort.
    """

    def __init__(self, db: Session, notifications: Optional[NotificationService] = None):
        self.db = db
        self.notifications = notifications or NotificationService(db)
        self.audit = AuditLogService(db)

    def _get_booking(self, booking_id: UUID) -> BookingRequest:
        booking = self.db.execute(
            select(BookingRequest)
            .options(selectinload(BookingRequest.workspace_bookings))
            .where(BookingRequest.id == booking_id)
        ).scalar_one_or_none()
        if not booking:
            raise NotFoundException("Booking", str(booking_id))
        return booking

    def _sample_statuses(self, booking_id: UUID) -> List[SampleStatus]:
        """Statuses of samples under service items whose service tracks samples."""
        stmt = (
            select(SampleTracking.status)
            .join(BookingServiceItem, SampleTracking.booking_service_item_id == BookingServiceItem.id)
            .join(Service, BookingServiceItem.service_id == Service.id)
            .where(
                BookingServiceItem.booking_request_id == booking_id,
                Service.requires_sample.is_(True),
            )
        )
        return list(self.db.execute(stmt).scalars().all())

    def recompute_booking_status(self, booking_id: UUID) -> RecomputeResult:
        """
        Re-derive and persist the status of one booking.

        Bookings outside approved/in_progress are returned unchanged, so
        completed, cancelled and rejected bookings are never reopened.

        Raises:
            NotFoundException: If the booking doesn't exist
        """
        booking = self._get_booking(booking_id)
        previous = booking.status

        if previous not in RECOMPUTABLE_BOOKING_STATUSES:
            return RecomputeResult(
                booking_id=booking.id,
                previous_status=previous,
                new_status=previous,
                changed=False,
                released_at=ensure_utc(booking.released_at),
            )

        now = utcnow()
        target = derive_booking_status(
            self._sample_statuses(booking.id),
            [slot.end_date for slot in booking.workspace_bookings],
            now,
        )

        if target == previous:
            return RecomputeResult(
                booking_id=booking.id,
                previous_status=previous,
                new_status=previous,
                changed=False,
                released_at=ensure_utc(booking.released_at),
            )

        values = {"status": target, "updated_at": now}
        first_completion = target == BookingStatus.COMPLETED and booking.released_at is None

        # Only write over the status we derived from; a concurrent recompute wins otherwise
        stmt = update(BookingRequest).where(
            BookingRequest.id == booking.id,
            BookingRequest.status == previous,
        )
        if first_completion:
            values["released_at"] = now
            stmt = stmt.where(BookingRequest.released_at.is_(None))

        try:
            result = self.db.execute(
                stmt.values(**values).execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(booking)

        if result.rowcount != 1:
            logger.info(
                "Booking status changed concurrently, skipping recompute",
                extra={"booking_id": str(booking.id), "expected_status": previous.value},
            )
            return RecomputeResult(
                booking_id=booking.id,
                previous_status=previous,
                new_status=booking.status,
                changed=False,
                released_at=ensure_utc(booking.released_at),
            )

        logger.info(
            f"Booking status recomputed: {previous.value} -> {target.value}",
            extra={"booking_id": str(booking.id), "reference_number": booking.reference_number},
        )

        events = [booking_completed(booking)] if first_completion else []
        self.notifications.dispatch(events)

        return RecomputeResult(
            booking_id=booking.id,
            previous_status=previous,
            new_status=target,
            changed=True,
            released_at=ensure_utc(booking.released_at),
            events=events,
        )

    def force_complete_booking(
        self,
        booking_id: UUID,
        admin_user_id: UUID,
        reason: Optional[str] = None,
    ) -> RecomputeResult:
        """
        Mark a booking completed regardless of its lab work.

        The caller is expected to have checked the admin role. released_at is
        always restamped.

        Raises:
            NotFoundException: If the booking doesn't exist
        """
        booking = self._get_booking(booking_id)
        previous = booking.status

        if previous == BookingStatus.COMPLETED:
            return RecomputeResult(
                booking_id=booking.id,
                previous_status=previous,
                new_status=previous,
                changed=False,
                released_at=ensure_utc(booking.released_at),
            )

        now = utcnow()
        try:
            booking.status = BookingStatus.COMPLETED
            booking.released_at = now
            self.audit.record_entry(
                user_id=admin_user_id,
                action="booking_force_completed",
                entity="booking",
                entity_id=booking.id,
                metadata={"previous_status": previous.value, "reason": reason},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Booking force-completed",
            extra={
                "booking_id": str(booking.id),
                "admin_user_id": str(admin_user_id),
                "previous_status": previous.value,
            },
        )

        events = [booking_completed(booking)]
        self.notifications.dispatch(events)

        return RecomputeResult(
            booking_id=booking.id,
            previous_status=previous,
            new_status=BookingStatus.COMPLETED,
            changed=True,
            released_at=now,
            events=events,
        )

    def recompute_workspace_bookings(self) -> List[RecomputeResult]:
        """
        Recompute approved bookings that have workspace slots and no tracked samples.

        Workspace-only bookings have no sample updates to trigger a recompute,
        so the scheduler calls this periodically.

        Returns:
            Results for bookings whose status changed
        """
        tracked = (
            select(BookingServiceItem.booking_request_id)
            .join(SampleTracking, SampleTracking.booking_service_item_id == BookingServiceItem.id)
            .join(Service, BookingServiceItem.service_id == Service.id)
            .where(Service.requires_sample.is_(True))
        )
        stmt = (
            select(BookingRequest.id)
            .join(WorkspaceBooking, WorkspaceBooking.booking_request_id == BookingRequest.id)
            .where(
                BookingRequest.status == BookingStatus.APPROVED,
                BookingRequest.id.not_in(tracked),
            )
            .distinct()
        )
        booking_ids = list(self.db.execute(stmt).scalars().all())

        changed: List[RecomputeResult] = []
        for booking_id in booking_ids:
            try:
                result = self.recompute_booking_status(booking_id)
            except Exception as e:
                logger.error(
                    f"Workspace recompute failed: {e}",
                    extra={"booking_id": str(booking_id)},
                    exc_info=True,
                )
                continue
            if result.changed:
                changed.append(result)

        logger.info(
            "Workspace bookings recomputed",
            extra={"candidates": len(booking_ids), "completed": len(changed)},
        )
        return changed
