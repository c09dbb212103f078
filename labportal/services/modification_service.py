"""
ModificationService - two-party quantity changes on booking service items.

Either side of a booking can propose a new quantity for a service item; the
other side must approve it before the item and booking totals change.

Rules:
- At most one pending modification per service item. The partial unique
  index on sample_modifications backs the check under concurrency.
- Only the counterparty of the creator may respond (see
  labportal.lib.workflow_rules.counterparty_violation).
- A modification is resolved exactly once: the resolving UPDATE is
  conditional on status = 'pending'.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from labportal.api.middleware.error_handler import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from labportal.lib.clock import utcnow
from labportal.lib.logging import get_logger
from labportal.lib.workflow_rules import (
    USER_MODIFIABLE_BOOKING_STATUSES,
    counterparty_violation,
)
from labportal.models.bookings import BookingRequest, BookingServiceItem
from labportal.models.modifications import (
    ModificationInitiator,
    ModificationStatus,
    SampleModification,
)
from labportal.models.services import Service
from labportal.models.users import User, UserStatus
from labportal.services.audit_service import AuditLogService
from labportal.services.notification_service import (
    NotificationService,
    modification_requested_for_admins,
    modification_requested_for_user,
    modification_resolved_for_admins,
    modification_resolved_for_user,
)


logger = get_logger(__name__)

MIN_REASON_LENGTH = 10
PENDING_EXISTS_MESSAGE = "There is already a pending modification for this service item"
ALREADY_PROCESSED_MESSAGE = "Modification has already been processed"

_CENTS = Decimal("0.01")


class ModificationService:
    """
    Service for creating, resolving and listing service item modifications.
    """

    def __init__(self, db: Session, notifications: Optional[NotificationService] = None):
        self.db = db
        self.notifications = notifications or NotificationService(db)
        self.audit = AuditLogService(db)

    # ===== Lookups =====

    def _get_service_item(self, service_item_id: UUID) -> BookingServiceItem:
        item = self.db.execute(
            select(BookingServiceItem)
            .options(
                selectinload(BookingServiceItem.booking_request).selectinload(BookingRequest.user),
                selectinload(BookingServiceItem.service).selectinload(Service.pricing),
            )
            .where(BookingServiceItem.id == service_item_id)
        ).scalar_one_or_none()
        if not item:
            raise NotFoundException("Service item", str(service_item_id))
        return item

    def _get_modification(self, modification_id: UUID) -> SampleModification:
        modification = self.db.execute(
            select(SampleModification)
            .options(
                selectinload(SampleModification.booking_service_item)
                .selectinload(BookingServiceItem.booking_request)
                .selectinload(BookingRequest.user),
                selectinload(SampleModification.booking_service_item)
                .selectinload(BookingServiceItem.service),
            )
            .where(SampleModification.id == modification_id)
        ).scalar_one_or_none()
        if not modification:
            raise NotFoundException("Modification", str(modification_id))
        return modification

    def _get_user(self, user_id: UUID) -> User:
        user = self.db.get(User, user_id)
        if not user:
            raise NotFoundException("User", str(user_id))
        return user

    def _has_pending(self, service_item_id: UUID) -> bool:
        stmt = select(SampleModification.id).where(
            SampleModification.booking_service_item_id == service_item_id,
            SampleModification.status == ModificationStatus.PENDING,
        )
        return self.db.execute(stmt).first() is not None

    @staticmethod
    def _unit_price(item: BookingServiceItem) -> Decimal:
        """Tier price for the booking owner, else the price stored on the item."""
        owner = item.booking_request.user
        pricing = item.service.price_for(owner.user_type) if owner else None
        if pricing is not None:
            return Decimal(pricing.price)
        return Decimal(item.unit_price)

    # ===== Create =====

    def create_admin_modification(
        self,
        service_item_id: UUID,
        new_quantity: int,
        reason: str,
        admin_user_id: UUID,
    ) -> SampleModification:
        """
        Propose a quantity change on behalf of the lab. The booking owner must respond.

        Raises:
            NotFoundException: If the service item doesn't exist
            ValidationException: If a modification is pending, or the reason or quantity is invalid
        """
        item = self._get_service_item(service_item_id)
        return self._create(item, new_quantity, reason, admin_user_id, ModificationInitiator.ADMIN)

    def create_user_modification(
        self,
        service_item_id: UUID,
        new_quantity: int,
        reason: str,
        user_id: UUID,
    ) -> SampleModification:
        """
        Propose a quantity change on the customer's own booking. An admin must respond.

        Raises:
            NotFoundException: If the service item doesn't exist
            ForbiddenException: If the caller doesn't own the booking
            ValidationException: If the booking isn't underway, a modification
                is pending, or the reason or quantity is invalid
        """
        item = self._get_service_item(service_item_id)
        booking = item.booking_request

        if booking.user_id != user_id:
            raise ForbiddenException("You can only modify your own bookings")

        if booking.status not in USER_MODIFIABLE_BOOKING_STATUSES:
            raise ValidationException(
                "Modifications can only be requested for approved or in-progress bookings",
                details={"status": booking.status.value},
            )

        return self._create(item, new_quantity, reason, user_id, ModificationInitiator.CUSTOMER)

    def _create(
        self,
        item: BookingServiceItem,
        new_quantity: int,
        reason: str,
        created_by: UUID,
        initiated_by: ModificationInitiator,
    ) -> SampleModification:
        if self._has_pending(item.id):
            raise ValidationException(PENDING_EXISTS_MESSAGE)

        reason = (reason or "").strip()
        if len(reason) < MIN_REASON_LENGTH:
            raise ValidationException(
                f"Reason must be at least {MIN_REASON_LENGTH} characters"
            )

        if new_quantity < 1:
            raise ValidationException("Quantity must be at least 1")

        unit_price = self._unit_price(item)
        new_total = (unit_price * new_quantity).quantize(_CENTS, rounding=ROUND_HALF_UP)

        modification = SampleModification(
            booking_service_item_id=item.id,
            original_quantity=item.quantity,
            new_quantity=new_quantity,
            original_total_price=Decimal(item.total_price),
            new_total_price=new_total,
            reason=reason,
            status=ModificationStatus.PENDING,
            initiated_by=initiated_by,
            created_by=created_by,
        )

        try:
            self.db.add(modification)
            self.db.flush()
            self.audit.record_entry(
                user_id=created_by,
                action="modification_requested",
                entity="sample_modification",
                entity_id=modification.id,
                metadata={
                    "initiated_by": initiated_by.value,
                    "service_item_id": item.id,
                    "original_quantity": item.quantity,
                    "new_quantity": new_quantity,
                },
            )
            self.db.commit()
        except IntegrityError:
            # Lost the race against a concurrent request for the same item
            self.db.rollback()
            raise ValidationException(PENDING_EXISTS_MESSAGE)
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Modification requested",
            extra={
                "modification_id": str(modification.id),
                "service_item_id": str(item.id),
                "initiated_by": initiated_by.value,
            },
        )

        booking = item.booking_request
        if initiated_by == ModificationInitiator.ADMIN:
            event = modification_requested_for_user(
                booking, item.service.name, item.quantity, new_quantity
            )
        else:
            event = modification_requested_for_admins(
                booking,
                item.service.name,
                booking.user.display_name,
                item.quantity,
                new_quantity,
                reason,
            )
        self.notifications.dispatch([event])

        return modification

    # ===== Respond =====

    def respond_to_modification(
        self,
        modification_id: UUID,
        approved: bool,
        responder_user_id: UUID,
        notes: Optional[str] = None,
    ) -> SampleModification:
        """
        Approve or reject a pending modification as the counterparty.

        Approval updates the service item and increments the booking total by
        the price difference in the same transaction. Rejection changes
        nothing but the modification itself.

        Raises:
            NotFoundException: If the modification or responder doesn't exist
            ForbiddenException: If the responder isn't the counterparty
            ValidationException: If the modification was already resolved
        """
        modification = self._get_modification(modification_id)
        responder = self._get_user(responder_user_id)
        item = modification.booking_service_item
        booking = item.booking_request

        violation = counterparty_violation(
            initiated_by=modification.initiated_by,
            created_by=modification.created_by,
            responder_id=responder.id,
            responder_is_admin=responder.is_admin and responder.status == UserStatus.ACTIVE,
            booking_owner_id=booking.user_id,
        )
        if violation:
            raise ForbiddenException(violation)

        if modification.status != ModificationStatus.PENDING:
            raise ValidationException(ALREADY_PROCESSED_MESSAGE)

        new_status = ModificationStatus.APPROVED if approved else ModificationStatus.REJECTED
        now = utcnow()

        try:
            result = self.db.execute(
                update(SampleModification)
                .where(
                    SampleModification.id == modification.id,
                    SampleModification.status == ModificationStatus.PENDING,
                )
                .values(
                    status=new_status,
                    approved_by=responder.id,
                    approved_at=now,
                    response_notes=notes,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ValidationException(ALREADY_PROCESSED_MESSAGE)

            if approved:
                delta = Decimal(modification.new_total_price) - Decimal(modification.original_total_price)
                self.db.execute(
                    update(BookingServiceItem)
                    .where(BookingServiceItem.id == item.id)
                    .values(
                        quantity=modification.new_quantity,
                        total_price=modification.new_total_price,
                    )
                    .execution_options(synchronize_session=False)
                )
                self.db.execute(
                    update(BookingRequest)
                    .where(BookingRequest.id == booking.id)
                    .values(
                        total_amount=BookingRequest.total_amount + delta,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(modification)
        if approved:
            self.db.refresh(item)
            self.db.refresh(booking)

        logger.info(
            f"Modification {new_status.value}",
            extra={
                "modification_id": str(modification.id),
                "responder_id": str(responder.id),
                "booking_id": str(booking.id),
            },
        )

        self.audit.record_entry_best_effort(
            user_id=responder.id,
            action=f"modification_{new_status.value}",
            entity="sample_modification",
            entity_id=modification.id,
            metadata={
                "initiated_by": modification.initiated_by.value,
                "booking_id": booking.id,
                "original_quantity": modification.original_quantity,
                "new_quantity": modification.new_quantity,
                "price_difference": modification.price_difference,
                "notes": notes,
            },
        )

        if responder.id == booking.user_id:
            event = modification_resolved_for_admins(
                booking,
                item.service.name,
                booking.user.display_name,
                approved,
                modification.new_quantity,
            )
        else:
            event = modification_resolved_for_user(
                booking, item.service.name, approved, modification.new_quantity
            )
        self.notifications.dispatch([event])

        return modification

    # ===== Listing =====

    def list_modifications(self, service_item_id: UUID) -> List[SampleModification]:
        """Modification history for a service item, newest first."""
        self._get_service_item(service_item_id)
        stmt = (
            select(SampleModification)
            .where(SampleModification.booking_service_item_id == service_item_id)
            .order_by(SampleModification.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())
