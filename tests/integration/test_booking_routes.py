"""
Integration tests for booking, modification and sample routes.
"""
from decimal import Decimal
from uuid import uuid4

import pytest

from labportal.models import BookingStatus, ModificationStatus, SampleStatus


REASON = "Customer sent one extra sample"


# ===== Authentication =====

@pytest.mark.integration
def test_missing_token_rejected(client, booking_factory):
    booking = booking_factory()

    response = client.post(f"/bookings/{booking.id}/cancel", json={})

    assert response.status_code in (401, 403)


@pytest.mark.integration
def test_invalid_token_rejected(client, booking_factory):
    booking = booking_factory()

    response = client.post(
        f"/bookings/{booking.id}/cancel",
        json={},
        headers={"Authorization": "Bearer not-a-token"},
    )

    assert response.status_code == 401


@pytest.mark.integration
def test_customer_cannot_use_admin_routes(client, booking_factory, customer, auth_headers):
    booking = booking_factory()

    response = client.post(
        f"/admin/bookings/{booking.id}/force-complete",
        json={},
        headers=auth_headers(customer),
    )

    assert response.status_code == 403
    assert response.json()["error"] == "Lab administrator access required"


# ===== Bookings =====

@pytest.mark.integration
def test_user_cancel_route(client, booking_factory, customer, auth_headers):
    booking = booking_factory()

    response = client.post(
        f"/bookings/{booking.id}/cancel",
        json={"reason": "Project postponed"},
        headers=auth_headers(customer),
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "cancelled"
    assert data["review_notes"] == "User cancellation: Project postponed"


@pytest.mark.integration
def test_user_cancel_completed_returns_400(client, booking_factory, customer, auth_headers):
    booking = booking_factory(status=BookingStatus.COMPLETED)

    response = client.post(f"/bookings/{booking.id}/cancel", json={}, headers=auth_headers(customer))

    assert response.status_code == 400
    assert response.json()["error"] == "Cannot cancel a completed booking"


@pytest.mark.integration
def test_user_cancel_unknown_booking_returns_404(client, customer, auth_headers):
    response = client.post(f"/bookings/{uuid4()}/cancel", json={}, headers=auth_headers(customer))

    assert response.status_code == 404
    assert response.json()["error"] == "Booking not found"


@pytest.mark.integration
def test_admin_cancel_completed_route(client, booking_factory, admin, auth_headers):
    booking = booking_factory(status=BookingStatus.COMPLETED)

    response = client.post(
        f"/admin/bookings/{booking.id}/cancel",
        json={"reason": "Billing error"},
        headers=auth_headers(admin),
    )

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"


@pytest.mark.integration
def test_timeline_routes(client, booking_factory, customer, admin, auth_headers):
    booking = booking_factory()

    response = client.patch(
        f"/bookings/{booking.id}/timeline",
        json={"preferred_start_date": "2026-05-01", "preferred_end_date": "2026-05-20"},
        headers=auth_headers(customer),
    )
    assert response.status_code == 200
    assert response.json()["preferred_start_date"] == "2026-05-01"

    response = client.patch(
        f"/admin/bookings/{booking.id}/timeline",
        json={"preferred_start_date": None, "preferred_end_date": None},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    assert response.json()["preferred_end_date"] is None


@pytest.mark.integration
def test_review_and_resubmit_routes(client, booking_factory, customer, admin, auth_headers):
    booking = booking_factory(status=BookingStatus.PENDING_APPROVAL)

    response = client.post(
        f"/admin/bookings/{booking.id}/request-revision",
        json={"comment": "Please attach the safety data sheet"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "revision_requested"

    response = client.post(f"/bookings/{booking.id}/resubmit", headers=auth_headers(customer))
    assert response.status_code == 200
    assert response.json()["status"] == "pending_approval"

    response = client.post(f"/admin/bookings/{booking.id}/approve", json={}, headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["status"] == "approved"


@pytest.mark.integration
def test_force_complete_and_recompute_routes(client, booking_factory, admin, auth_headers):
    booking = booking_factory(sample_statuses=(SampleStatus.IN_ANALYSIS,))

    response = client.post(f"/admin/bookings/{booking.id}/recompute", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["new_status"] == "in_progress"
    assert response.json()["changed"] is True

    response = client.post(
        f"/admin/bookings/{booking.id}/force-complete",
        json={"reason": "Results delivered by hand"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["previous_status"] == "in_progress"
    assert data["new_status"] == "completed"
    assert data["released_at"] is not None


# ===== Modifications =====

@pytest.mark.integration
def test_modification_round_trip_over_http(client, db_session, booking_factory, customer, admin, auth_headers):
    booking = booking_factory(quantity=2)
    item_id = booking.service_items[0].id

    response = client.post(
        "/admin/modifications",
        json={"service_item_id": str(item_id), "new_quantity": 3, "reason": REASON},
        headers=auth_headers(admin),
    )
    assert response.status_code == 201
    created = response.json()
    assert created["status"] == "pending"
    assert created["initiated_by"] == "admin"
    assert created["price_difference"] == 50.0

    # Admin endpoint cannot be used to approve the admin's own proposal
    response = client.patch(
        f"/admin/modifications/{created['id']}",
        json={"approved": True},
        headers=auth_headers(admin),
    )
    assert response.status_code == 403
    assert response.json()["error"] == "You cannot respond to your own modification requests"

    response = client.patch(
        f"/user/modifications/{created['id']}",
        json={"approved": True, "notes": "Agreed"},
        headers=auth_headers(customer),
    )
    assert response.status_code == 200
    assert response.json()["status"] == ModificationStatus.APPROVED.value

    db_session.expire_all()
    assert booking.total_amount == Decimal("150.00")

    response = client.get(
        "/admin/modifications",
        params={"service_item_id": str(item_id)},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    assert [m["id"] for m in response.json()] == [created["id"]]


@pytest.mark.integration
def test_user_modification_route_validation(client, booking_factory, customer, auth_headers):
    booking = booking_factory()
    item_id = str(booking.service_items[0].id)

    response = client.post(
        "/user/modifications",
        json={"service_item_id": item_id, "new_quantity": 1, "reason": "short"},
        headers=auth_headers(customer),
    )
    assert response.status_code == 400

    response = client.post(
        "/user/modifications",
        json={"service_item_id": item_id, "new_quantity": 1, "reason": REASON},
        headers=auth_headers(customer),
    )
    assert response.status_code == 201

    response = client.post(
        "/user/modifications",
        json={"service_item_id": item_id, "new_quantity": 4, "reason": REASON},
        headers=auth_headers(customer),
    )
    assert response.status_code == 400
    assert response.json()["error"] == "There is already a pending modification for this service item"


# ===== Samples =====

@pytest.mark.integration
def test_sample_status_route_drives_booking(client, booking_factory, admin, auth_headers):
    booking = booking_factory(sample_statuses=(SampleStatus.IN_ANALYSIS,))
    sample = booking.service_items[0].sample_tracking[0]

    response = client.patch(
        f"/admin/samples/{sample.id}/status",
        json={"status": "analysis_complete"},
        headers=auth_headers(admin),
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "analysis_complete"
    assert data["booking_status"] == "completed"
    assert data["booking_status_changed"] is True
    assert data["released_at"] is not None


@pytest.mark.integration
def test_sample_status_route_rejects_unknown_status(client, booking_factory, admin, auth_headers):
    booking = booking_factory()
    sample = booking.service_items[0].sample_tracking[0]

    response = client.patch(
        f"/admin/samples/{sample.id}/status",
        json={"status": "lost"},
        headers=auth_headers(admin),
    )

    assert response.status_code == 422
