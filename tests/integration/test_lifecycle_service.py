"""
Integration tests for the booking lifecycle engine.
"""
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from labportal.api.middleware.error_handler import NotFoundException
from labportal.lib.clock import utcnow
from labportal.models import (
    AuditLog,
    BookingRequest,
    BookingStatus,
    Notification,
    NotificationType,
    SampleStatus,
)
from labportal.services.lifecycle_service import LifecycleService


def _completion_notifications(db, booking):
    return db.execute(
        select(func.count(Notification.id)).where(
            Notification.related_entity_id == str(booking.id),
            Notification.type == NotificationType.BOOKING_COMPLETED,
        )
    ).scalar_one()


def _set_samples(db, booking, status):
    for item in booking.service_items:
        for sample in item.sample_tracking:
            sample.status = status
    db.commit()


@pytest.mark.integration
def test_missing_booking_raises_not_found(db_session):
    with pytest.raises(NotFoundException):
        LifecycleService(db_session).recompute_booking_status(uuid4())


@pytest.mark.integration
def test_active_sample_moves_booking_to_in_progress(db_session, booking_factory):
    booking = booking_factory(sample_statuses=(SampleStatus.RECEIVED, SampleStatus.PENDING))

    result = LifecycleService(db_session).recompute_booking_status(booking.id)

    assert result.changed is True
    assert result.previous_status == BookingStatus.APPROVED
    assert result.new_status == BookingStatus.IN_PROGRESS
    assert result.released_at is None
    assert result.events == []


@pytest.mark.integration
def test_all_terminal_samples_complete_and_stamp_release(db_session, booking_factory):
    booking = booking_factory(
        status=BookingStatus.IN_PROGRESS,
        sample_statuses=(SampleStatus.ANALYSIS_COMPLETE, SampleStatus.RETURNED),
    )

    result = LifecycleService(db_session).recompute_booking_status(booking.id)

    assert result.new_status == BookingStatus.COMPLETED
    assert result.released_at is not None
    db_session.refresh(booking)
    assert booking.status == BookingStatus.COMPLETED
    assert booking.released_at is not None
    assert _completion_notifications(db_session, booking) == 1


@pytest.mark.integration
def test_recompute_is_idempotent(db_session, booking_factory):
    booking = booking_factory(sample_statuses=(SampleStatus.IN_ANALYSIS,))
    service = LifecycleService(db_session)

    first = service.recompute_booking_status(booking.id)
    second = service.recompute_booking_status(booking.id)

    assert first.changed is True
    assert second.changed is False
    assert second.previous_status == second.new_status == BookingStatus.IN_PROGRESS


@pytest.mark.integration
@pytest.mark.parametrize(
    "status",
    [
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.REJECTED,
        BookingStatus.PENDING_APPROVAL,
    ],
)
def test_non_recomputable_bookings_are_left_alone(db_session, booking_factory, status):
    booking = booking_factory(status=status, sample_statuses=(SampleStatus.IN_ANALYSIS,))

    result = LifecycleService(db_session).recompute_booking_status(booking.id)

    assert result.changed is False
    assert result.new_status == status
    db_session.refresh(booking)
    assert booking.status == status


@pytest.mark.integration
def test_completed_booking_is_never_reopened(db_session, booking_factory):
    booking = booking_factory(sample_statuses=(SampleStatus.ANALYSIS_COMPLETE,))
    service = LifecycleService(db_session)
    service.recompute_booking_status(booking.id)

    # Lab reopens a sample after release
    _set_samples(db_session, booking, SampleStatus.IN_ANALYSIS)
    result = service.recompute_booking_status(booking.id)

    assert result.changed is False
    assert result.new_status == BookingStatus.COMPLETED


@pytest.mark.integration
def test_in_progress_can_drop_back_to_approved(db_session, booking_factory):
    booking = booking_factory(sample_statuses=(SampleStatus.RECEIVED,))
    service = LifecycleService(db_session)
    service.recompute_booking_status(booking.id)

    _set_samples(db_session, booking, SampleStatus.PENDING)
    result = service.recompute_booking_status(booking.id)

    assert result.previous_status == BookingStatus.IN_PROGRESS
    assert result.new_status == BookingStatus.APPROVED


@pytest.mark.integration
def test_samples_of_non_sample_services_are_ignored(db_session, booking_factory, workspace_service):
    booking = booking_factory(
        service=workspace_service,
        sample_statuses=(SampleStatus.IN_ANALYSIS,),
    )

    result = LifecycleService(db_session).recompute_booking_status(booking.id)

    # No tracked samples and no workspace slots
    assert result.changed is False
    assert result.new_status == BookingStatus.APPROVED


@pytest.mark.integration
def test_workspace_booking_completes_after_last_slot(db_session, booking_factory, workspace_service):
    now = utcnow()
    booking = booking_factory(
        service=workspace_service,
        sample_statuses=(),
        workspace_slots=[(now - timedelta(days=30), now - timedelta(days=1))],
    )

    result = LifecycleService(db_session).recompute_booking_status(booking.id)

    assert result.new_status == BookingStatus.COMPLETED
    assert result.released_at is not None


@pytest.mark.integration
def test_workspace_booking_with_future_slot_stays_approved(db_session, booking_factory, workspace_service):
    now = utcnow()
    booking = booking_factory(
        service=workspace_service,
        sample_statuses=(),
        workspace_slots=[
            (now - timedelta(days=30), now - timedelta(days=1)),
            (now, now + timedelta(days=5)),
        ],
    )

    result = LifecycleService(db_session).recompute_booking_status(booking.id)

    assert result.changed is False
    assert result.new_status == BookingStatus.APPROVED


@pytest.mark.integration
def test_recompute_workspace_bookings_only_touches_workspace_only_bookings(
    db_session, booking_factory, workspace_service
):
    now = utcnow()
    ended = [(now - timedelta(days=10), now - timedelta(hours=2))]
    workspace_only = booking_factory(service=workspace_service, sample_statuses=(), workspace_slots=ended)
    with_samples = booking_factory(sample_statuses=(SampleStatus.PENDING,), workspace_slots=ended)
    no_slots = booking_factory(service=workspace_service, sample_statuses=())

    results = LifecycleService(db_session).recompute_workspace_bookings()

    assert [r.booking_id for r in results] == [workspace_only.id]
    db_session.refresh(with_samples)
    db_session.refresh(no_slots)
    assert with_samples.status == BookingStatus.APPROVED
    assert no_slots.status == BookingStatus.APPROVED


@pytest.mark.integration
def test_force_complete_stamps_release_and_audits(db_session, booking_factory, admin):
    booking = booking_factory(sample_statuses=(SampleStatus.PENDING,))

    result = LifecycleService(db_session).force_complete_booking(booking.id, admin.id, "Customer collected early")

    assert result.changed is True
    assert result.previous_status == BookingStatus.APPROVED
    assert result.new_status == BookingStatus.COMPLETED
    assert result.released_at is not None

    entry = db_session.execute(
        select(AuditLog).where(AuditLog.action == "booking_force_completed")
    ).scalar_one()
    assert entry.user_id == admin.id
    assert entry.entity_id == str(booking.id)
    assert entry.extra_data == {"previous_status": "approved", "reason": "Customer collected early"}
    assert _completion_notifications(db_session, booking) == 1


@pytest.mark.integration
def test_force_complete_on_completed_booking_is_noop(db_session, booking_factory, admin):
    booking = booking_factory(status=BookingStatus.COMPLETED)

    result = LifecycleService(db_session).force_complete_booking(booking.id, admin.id, None)

    assert result.changed is False
    assert db_session.execute(select(func.count(AuditLog.id))).scalar_one() == 0


@pytest.mark.integration
def test_force_complete_restamps_released_at(db_session, booking_factory, admin):
    booking = booking_factory(status=BookingStatus.IN_PROGRESS)
    earlier = utcnow() - timedelta(days=7)
    booking.released_at = earlier
    db_session.commit()

    result = LifecycleService(db_session).force_complete_booking(booking.id, admin.id)

    assert result.released_at > earlier


@pytest.mark.integration
def test_notification_failure_does_not_undo_completion(db_session, booking_factory):
    booking = booking_factory(sample_statuses=(SampleStatus.ANALYSIS_COMPLETE,))
    service = LifecycleService(db_session)
    service.notifications._deliver = _raise

    result = service.recompute_booking_status(booking.id)

    assert result.changed is True
    db_session.expire_all()
    db_session.refresh(booking)
    assert booking.status == BookingStatus.COMPLETED
    assert _completion_notifications(db_session, booking) == 0


def _raise(event):
    raise RuntimeError("notification store unavailable")


@pytest.mark.integration
def test_concurrent_completion_notifies_once(db_session, booking_factory, customer):
    booking = booking_factory(sample_statuses=(SampleStatus.ANALYSIS_COMPLETE,))
    service = LifecycleService(db_session)
    read_statuses = service._sample_statuses

    def completed_elsewhere(booking_id):
        # Another worker completes the booking between our read and our write
        db_session.execute(
            update(BookingRequest)
            .where(BookingRequest.id == booking_id)
            .values(status=BookingStatus.COMPLETED, released_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db_session.commit()
        return read_statuses(booking_id)

    service._sample_statuses = completed_elsewhere

    result = service.recompute_booking_status(booking.id)

    assert result.changed is False
    assert result.new_status == BookingStatus.COMPLETED
    assert result.events == []
    assert _completion_notifications(db_session, booking) == 0


@pytest.mark.integration
def test_workspace_sweep_ignores_samples_of_non_sample_services(
    db_session, booking_factory, workspace_service
):
    now = utcnow()
    booking = booking_factory(
        service=workspace_service,
        sample_statuses=(SampleStatus.PENDING,),
        workspace_slots=[(now - timedelta(days=10), now - timedelta(hours=2))],
    )

    results = LifecycleService(db_session).recompute_workspace_bookings()

    assert [r.booking_id for r in results] == [booking.id]
    db_session.refresh(booking)
    assert booking.status == BookingStatus.COMPLETED
