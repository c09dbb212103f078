"""
Booking workflow rules.

Transition tables for bookings and modifications, the sample status groups
the lifecycle engine derives booking status from, and the counterparty
predicate shared by every modification response entry point.

Usage:
    from labportal.lib.workflow_rules import can_transition

    if not can_transition(booking.status, BookingStatus.CANCELLED):
        ...
"""
from typing import Dict, FrozenSet, Optional
from uuid import UUID

from labportal.models.bookings import BookingStatus
from labportal.models.modifications import ModificationInitiator, ModificationStatus
from labportal.models.samples import SampleStatus


# Allowed next states for every booking status. in_progress/completed are
# reached through the lifecycle engine only.
BOOKING_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.DRAFT: frozenset({
        BookingStatus.PENDING_USER_VERIFICATION,
        BookingStatus.PENDING_APPROVAL,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.PENDING_USER_VERIFICATION: frozenset({
        BookingStatus.PENDING_APPROVAL,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.PENDING_APPROVAL: frozenset({
        BookingStatus.APPROVED,
        BookingStatus.REJECTED,
        BookingStatus.REVISION_REQUESTED,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.REVISION_REQUESTED: frozenset({
        BookingStatus.PENDING_APPROVAL,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.APPROVED: frozenset({
        BookingStatus.IN_PROGRESS,
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.IN_PROGRESS: frozenset({
        BookingStatus.APPROVED,
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.REJECTED: frozenset({
        BookingStatus.CANCELLED,
    }),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

# Admin overrides: force-complete from any open state, cancel anything not yet cancelled
ADMIN_OVERRIDE_TARGETS: FrozenSet[BookingStatus] = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
})

MODIFICATION_TRANSITIONS: Dict[ModificationStatus, FrozenSet[ModificationStatus]] = {
    ModificationStatus.PENDING: frozenset({
        ModificationStatus.APPROVED,
        ModificationStatus.REJECTED,
    }),
    ModificationStatus.APPROVED: frozenset(),
    ModificationStatus.REJECTED: frozenset(),
}

# Lab work in progress
ACTIVE_SAMPLE_STATUSES: FrozenSet[SampleStatus] = frozenset({
    SampleStatus.RECEIVED,
    SampleStatus.IN_ANALYSIS,
    SampleStatus.RETURN_REQUESTED,
})

# Lab work finished
TERMINAL_SAMPLE_STATUSES: FrozenSet[SampleStatus] = frozenset({
    SampleStatus.ANALYSIS_COMPLETE,
    SampleStatus.RETURNED,
})

# Bookings the lifecycle engine may re-derive
RECOMPUTABLE_BOOKING_STATUSES: FrozenSet[BookingStatus] = frozenset({
    BookingStatus.APPROVED,
    BookingStatus.IN_PROGRESS,
})

# Bookings a customer may still propose quantity changes on
USER_MODIFIABLE_BOOKING_STATUSES: FrozenSet[BookingStatus] = frozenset({
    BookingStatus.APPROVED,
    BookingStatus.IN_PROGRESS,
})


def can_transition(
    current: BookingStatus,
    target: BookingStatus,
    admin_override: bool = False,
) -> bool:
    """
    Check a booking status change against the transition table.

    Args:
        current: Status the booking is in now
        target: Requested status
        admin_override: Allow the admin-only overrides (force-complete, cancel completed)

    Returns:
        True if the change is allowed
    """
    if current == target:
        return False
    if target in BOOKING_TRANSITIONS.get(current, frozenset()):
        return True
    if admin_override and target in ADMIN_OVERRIDE_TARGETS:
        return current != BookingStatus.CANCELLED
    return False


def is_terminal(status: BookingStatus) -> bool:
    return not BOOKING_TRANSITIONS.get(status)


def can_resolve_modification(current: ModificationStatus, target: ModificationStatus) -> bool:
    return target in MODIFICATION_TRANSITIONS.get(current, frozenset())


def counterparty_violation(
    initiated_by: ModificationInitiator,
    created_by: UUID,
    responder_id: UUID,
    responder_is_admin: bool,
    booking_owner_id: UUID,
) -> Optional[str]:
    """
    Decide whether a user may respond to a modification.

    The responder must be the counterparty of the creator: the booking owner
    answers admin-initiated requests, an administrator answers
    customer-initiated ones, and the creator never answers their own.

    Returns:
        None when allowed, otherwise the message to surface to the caller
    """
    if responder_id == created_by:
        return "You cannot respond to your own modification requests"

    if initiated_by == ModificationInitiator.ADMIN:
        if responder_id != booking_owner_id:
            return "You can only respond to modifications for your own bookings"
        return None

    if not responder_is_admin:
        return "Only a lab administrator can respond to this modification request"
    return None
