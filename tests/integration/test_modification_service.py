"""
Integration tests for the modification request workflow.
"""
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from labportal.api.middleware.error_handler import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from labportal.models import (
    AuditLog,
    BookingStatus,
    ModificationInitiator,
    ModificationStatus,
    Notification,
    NotificationType,
    SampleModification,
)
from labportal.services.modification_service import (
    PENDING_EXISTS_MESSAGE,
    ModificationService,
)


REASON = "Customer sent one extra sample"


def _item(booking):
    return booking.service_items[0]


def _notifications(db, user, type):
    return db.execute(
        select(Notification).where(Notification.user_id == user.id, Notification.type == type)
    ).scalars().all()


# ===== Create =====

@pytest.mark.integration
def test_admin_creates_modification_with_tier_price(db_session, booking_factory, admin, customer):
    booking = booking_factory(quantity=2)

    modification = ModificationService(db_session).create_admin_modification(
        _item(booking).id, 3, REASON, admin.id
    )

    assert modification.status == ModificationStatus.PENDING
    assert modification.initiated_by == ModificationInitiator.ADMIN
    assert modification.original_quantity == 2
    assert modification.new_quantity == 3
    assert modification.original_total_price == Decimal("100.00")
    assert modification.new_total_price == Decimal("150.00")
    assert modification.price_difference == Decimal("50.00")

    notes = _notifications(db_session, customer, NotificationType.SERVICE_MODIFICATION_REQUESTED)
    assert len(notes) == 1
    assert "increased from 2 to 3" in notes[0].message

    entry = db_session.execute(
        select(AuditLog).where(AuditLog.action == "modification_requested")
    ).scalar_one()
    assert entry.extra_data["initiated_by"] == "admin"


@pytest.mark.integration
def test_price_falls_back_to_item_unit_price(db_session, booking_factory, admin, customer, analysis_service):
    analysis_service.pricing.clear()
    db_session.commit()
    booking = booking_factory(quantity=2, unit_price=Decimal("42.50"))

    modification = ModificationService(db_session).create_admin_modification(
        _item(booking).id, 4, REASON, admin.id
    )

    assert modification.new_total_price == Decimal("170.00")


@pytest.mark.integration
def test_user_modification_notifies_active_admins(
    db_session, booking_factory, customer, admin, second_admin, inactive_admin
):
    booking = booking_factory(status=BookingStatus.IN_PROGRESS)

    modification = ModificationService(db_session).create_user_modification(
        _item(booking).id, 1, "One sample was contaminated in transit", customer.id
    )

    assert modification.initiated_by == ModificationInitiator.CUSTOMER
    assert modification.new_total_price == Decimal("50.00")
    for user in (admin, second_admin):
        notes = _notifications(db_session, user, NotificationType.SERVICE_MODIFICATION_REQUESTED)
        assert len(notes) == 1
        assert "Aisha Rahman" in notes[0].message
    assert _notifications(db_session, inactive_admin, NotificationType.SERVICE_MODIFICATION_REQUESTED) == []


@pytest.mark.integration
def test_missing_service_item(db_session, admin):
    with pytest.raises(NotFoundException):
        ModificationService(db_session).create_admin_modification(uuid4(), 2, REASON, admin.id)


@pytest.mark.integration
def test_user_cannot_modify_someone_elses_booking(db_session, booking_factory, other_customer):
    booking = booking_factory()

    with pytest.raises(ForbiddenException):
        ModificationService(db_session).create_user_modification(
            _item(booking).id, 3, REASON, other_customer.id
        )


@pytest.mark.integration
@pytest.mark.parametrize(
    "status",
    [BookingStatus.PENDING_APPROVAL, BookingStatus.COMPLETED, BookingStatus.CANCELLED],
)
def test_user_modification_requires_underway_booking(db_session, booking_factory, customer, status):
    booking = booking_factory(status=status)

    with pytest.raises(ValidationException):
        ModificationService(db_session).create_user_modification(_item(booking).id, 3, REASON, customer.id)


@pytest.mark.integration
def test_short_reason_rejected(db_session, booking_factory, admin):
    booking = booking_factory()

    with pytest.raises(ValidationException) as exc_info:
        ModificationService(db_session).create_admin_modification(_item(booking).id, 3, "too short", admin.id)

    assert "at least 10 characters" in exc_info.value.message


@pytest.mark.integration
def test_zero_quantity_rejected(db_session, booking_factory, admin):
    booking = booking_factory()

    with pytest.raises(ValidationException):
        ModificationService(db_session).create_admin_modification(_item(booking).id, 0, REASON, admin.id)


@pytest.mark.integration
def test_only_one_pending_modification_per_item(db_session, booking_factory, admin, customer):
    booking = booking_factory()
    service = ModificationService(db_session)
    first = service.create_admin_modification(_item(booking).id, 3, REASON, admin.id)

    with pytest.raises(ValidationException) as exc_info:
        service.create_admin_modification(_item(booking).id, 4, REASON, admin.id)
    assert exc_info.value.message == PENDING_EXISTS_MESSAGE

    service.respond_to_modification(first.id, False, customer.id)
    second = service.create_admin_modification(_item(booking).id, 4, REASON, admin.id)

    assert second.status == ModificationStatus.PENDING


@pytest.mark.integration
def test_pending_check_precedes_reason_check(db_session, booking_factory, admin):
    booking = booking_factory()
    service = ModificationService(db_session)
    service.create_admin_modification(_item(booking).id, 3, REASON, admin.id)

    with pytest.raises(ValidationException) as exc_info:
        service.create_admin_modification(_item(booking).id, 4, "short", admin.id)

    assert exc_info.value.message == PENDING_EXISTS_MESSAGE


@pytest.mark.integration
def test_concurrent_duplicate_hits_unique_index(db_session, booking_factory, admin):
    booking = booking_factory()
    service = ModificationService(db_session)
    service.create_admin_modification(_item(booking).id, 3, REASON, admin.id)

    # Simulate a request that passed the pending check before the first committed
    service._has_pending = lambda service_item_id: False
    with pytest.raises(ValidationException) as exc_info:
        service.create_admin_modification(_item(booking).id, 5, REASON, admin.id)

    assert exc_info.value.message == PENDING_EXISTS_MESSAGE
    pending = db_session.execute(
        select(SampleModification).where(SampleModification.status == ModificationStatus.PENDING)
    ).scalars().all()
    assert len(pending) == 1


# ===== Respond =====

@pytest.mark.integration
def test_owner_approves_admin_modification(db_session, booking_factory, admin, customer):
    booking = booking_factory(quantity=2)
    service = ModificationService(db_session)
    modification = service.create_admin_modification(_item(booking).id, 3, REASON, admin.id)

    resolved = service.respond_to_modification(modification.id, True, customer.id, "Fine by me")

    assert resolved.status == ModificationStatus.APPROVED
    assert resolved.approved_by == customer.id
    assert resolved.approved_at is not None
    assert resolved.response_notes == "Fine by me"

    db_session.expire_all()
    item = _item(booking)
    assert item.quantity == 3
    assert item.total_price == Decimal("150.00")
    assert booking.total_amount == Decimal("150.00")

    assert db_session.execute(
        select(AuditLog).where(AuditLog.action == "modification_approved")
    ).scalar_one().user_id == customer.id
    admin_notes = _notifications(db_session, admin, NotificationType.SERVICE_MODIFICATION_RESOLVED)
    assert [n.title for n in admin_notes] == ["Modification Approved"]


@pytest.mark.integration
def test_decrease_applies_negative_delta(db_session, booking_factory, admin, customer):
    booking = booking_factory(quantity=3)
    service = ModificationService(db_session)
    modification = service.create_user_modification(
        _item(booking).id, 1, "Two samples were withdrawn", customer.id
    )

    service.respond_to_modification(modification.id, True, admin.id)

    db_session.expire_all()
    assert booking.total_amount == Decimal("50.00")
    owner_notes = _notifications(db_session, customer, NotificationType.SERVICE_MODIFICATION_RESOLVED)
    assert [n.title for n in owner_notes] == ["Modification Request Approved"]


@pytest.mark.integration
def test_rejection_leaves_item_and_booking_untouched(db_session, booking_factory, admin, customer):
    booking = booking_factory(quantity=2)
    service = ModificationService(db_session)
    modification = service.create_admin_modification(_item(booking).id, 3, REASON, admin.id)

    resolved = service.respond_to_modification(modification.id, False, customer.id)

    assert resolved.status == ModificationStatus.REJECTED
    db_session.expire_all()
    assert _item(booking).quantity == 2
    assert _item(booking).total_price == Decimal("100.00")
    assert booking.total_amount == Decimal("100.00")
    assert db_session.execute(
        select(AuditLog).where(AuditLog.action == "modification_rejected")
    ).scalar_one() is not None


@pytest.mark.integration
def test_admin_cannot_approve_own_modification(db_session, booking_factory, admin):
    booking = booking_factory()
    service = ModificationService(db_session)
    modification = service.create_admin_modification(_item(booking).id, 3, REASON, admin.id)

    with pytest.raises(ForbiddenException):
        service.respond_to_modification(modification.id, True, admin.id)

    db_session.expire_all()
    assert booking.total_amount == Decimal("100.00")


@pytest.mark.integration
def test_other_admin_cannot_answer_admin_modification(db_session, booking_factory, admin, second_admin):
    booking = booking_factory()
    service = ModificationService(db_session)
    modification = service.create_admin_modification(_item(booking).id, 3, REASON, admin.id)

    with pytest.raises(ForbiddenException):
        service.respond_to_modification(modification.id, True, second_admin.id)


@pytest.mark.integration
def test_customer_cannot_approve_own_modification(db_session, booking_factory, customer):
    booking = booking_factory()
    service = ModificationService(db_session)
    modification = service.create_user_modification(_item(booking).id, 3, REASON, customer.id)

    with pytest.raises(ForbiddenException):
        service.respond_to_modification(modification.id, True, customer.id)


@pytest.mark.integration
def test_inactive_admin_cannot_answer_user_modification(db_session, booking_factory, customer, inactive_admin):
    booking = booking_factory()
    service = ModificationService(db_session)
    modification = service.create_user_modification(_item(booking).id, 3, REASON, customer.id)

    with pytest.raises(ForbiddenException) as exc_info:
        service.respond_to_modification(modification.id, True, inactive_admin.id)

    assert exc_info.value.message == "Only a lab administrator can respond to this modification request"
    db_session.refresh(modification)
    assert modification.status == ModificationStatus.PENDING


@pytest.mark.integration
def test_stranger_cannot_answer_admin_modification(db_session, booking_factory, admin, other_customer):
    booking = booking_factory()
    service = ModificationService(db_session)
    modification = service.create_admin_modification(_item(booking).id, 3, REASON, admin.id)

    with pytest.raises(ForbiddenException):
        service.respond_to_modification(modification.id, True, other_customer.id)


@pytest.mark.integration
def test_second_response_is_rejected(db_session, booking_factory, admin, customer):
    booking = booking_factory(quantity=2)
    service = ModificationService(db_session)
    modification = service.create_admin_modification(_item(booking).id, 3, REASON, admin.id)
    service.respond_to_modification(modification.id, True, customer.id)

    with pytest.raises(ValidationException) as exc_info:
        service.respond_to_modification(modification.id, True, customer.id)

    assert exc_info.value.message == "Modification has already been processed"
    db_session.expire_all()
    assert booking.total_amount == Decimal("150.00")


@pytest.mark.integration
def test_lost_race_does_not_double_apply(db_session, booking_factory, admin, customer):
    booking = booking_factory(quantity=2)
    service = ModificationService(db_session)
    modification = service.create_admin_modification(_item(booking).id, 3, REASON, admin.id)

    # Another request resolves it between our read and our update
    original_get = service._get_modification

    def stale_get(modification_id):
        found = original_get(modification_id)
        db_session.execute(
            SampleModification.__table__.update()
            .where(SampleModification.id == modification_id)
            .values(status=ModificationStatus.APPROVED.value)
        )
        db_session.commit()
        return found

    service._get_modification = stale_get

    with pytest.raises(ValidationException):
        service.respond_to_modification(modification.id, True, customer.id)

    db_session.expire_all()
    assert booking.total_amount == Decimal("100.00")
    assert _item(booking).quantity == 2


@pytest.mark.integration
def test_respond_missing_modification(db_session, customer):
    with pytest.raises(NotFoundException):
        ModificationService(db_session).respond_to_modification(uuid4(), True, customer.id)


@pytest.mark.integration
def test_list_modifications_newest_first(db_session, booking_factory, admin, customer):
    booking = booking_factory()
    service = ModificationService(db_session)
    first = service.create_admin_modification(_item(booking).id, 3, REASON, admin.id)
    service.respond_to_modification(first.id, False, customer.id)
    second = service.create_admin_modification(_item(booking).id, 4, REASON, admin.id)

    history = service.list_modifications(_item(booking).id)

    assert [m.id for m in history] == [second.id, first.id]
