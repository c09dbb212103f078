"""
Modification request routes.

Routes:
- POST /user/modifications - Customer proposes a quantity change
- PATCH /user/modifications/{modification_id} - Customer answers a lab proposal
- POST /admin/modifications - Lab proposes a quantity change
- GET /admin/modifications - Modification history of a service item
- PATCH /admin/modifications/{modification_id} - Lab answers a customer proposal

Both PATCH routes go through the same counterparty check, so a caller can
never resolve a modification they created.
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from labportal.api.dependencies import (
    get_current_user,
    get_db,
    get_notification_service,
    require_admin,
)
from labportal.models.modifications import (
    ModificationInitiator,
    ModificationStatus,
    SampleModification,
)
from labportal.models.users import User
from labportal.services.modification_service import ModificationService
from labportal.services.notification_service import NotificationService


# Request/Response Models
class CreateModificationRequest(BaseModel):
    service_item_id: UUID
    new_quantity: int = Field(..., description="Proposed quantity (at least 1)")
    reason: str = Field(..., description="Why the change is needed (at least 10 characters)")


class RespondModificationRequest(BaseModel):
    approved: bool
    notes: Optional[str] = Field(None, max_length=2000)


class ModificationResponse(BaseModel):
    """Modification request with pricing snapshot and resolution."""
    id: UUID
    booking_service_item_id: UUID
    original_quantity: int
    new_quantity: int
    original_total_price: float
    new_total_price: float
    price_difference: float
    reason: str
    status: ModificationStatus
    initiated_by: ModificationInitiator
    created_by: UUID
    approved_by: Optional[UUID] = None
    response_notes: Optional[str] = None
    created_at: datetime
    approved_at: Optional[datetime] = None


def to_modification_response(modification: SampleModification) -> ModificationResponse:
    return ModificationResponse(
        id=modification.id,
        booking_service_item_id=modification.booking_service_item_id,
        original_quantity=modification.original_quantity,
        new_quantity=modification.new_quantity,
        original_total_price=float(modification.original_total_price),
        new_total_price=float(modification.new_total_price),
        price_difference=float(modification.price_difference),
        reason=modification.reason,
        status=modification.status,
        initiated_by=modification.initiated_by,
        created_by=modification.created_by,
        approved_by=modification.approved_by,
        response_notes=modification.response_notes,
        created_at=modification.created_at,
        approved_at=modification.approved_at,
    )


user_router = APIRouter(prefix="/user/modifications", tags=["modifications"])
admin_router = APIRouter(prefix="/admin/modifications", tags=["admin_modifications"])


# ===== Customer =====

@user_router.post("", response_model=ModificationResponse, status_code=status.HTTP_201_CREATED)
def create_user_modification(
    payload: CreateModificationRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
) -> ModificationResponse:
    """Propose a quantity change on one of the caller's approved or in-progress bookings."""
    modification = ModificationService(db, notifications).create_user_modification(
        payload.service_item_id, payload.new_quantity, payload.reason, user.id
    )
    return to_modification_response(modification)


@user_router.patch("/{modification_id}", response_model=ModificationResponse)
def respond_as_user(
    modification_id: UUID,
    payload: RespondModificationRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
) -> ModificationResponse:
    modification = ModificationService(db, notifications).respond_to_modification(
        modification_id, payload.approved, user.id, payload.notes
    )
    return to_modification_response(modification)


# ===== Admin =====

@admin_router.post("", response_model=ModificationResponse, status_code=status.HTTP_201_CREATED)
def create_admin_modification(
    payload: CreateModificationRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
) -> ModificationResponse:
    """Propose a quantity change; the booking owner has to approve it."""
    modification = ModificationService(db, notifications).create_admin_modification(
        payload.service_item_id, payload.new_quantity, payload.reason, admin.id
    )
    return to_modification_response(modification)


@admin_router.get("", response_model=List[ModificationResponse])
def list_modifications(
    service_item_id: UUID = Query(..., description="Service item to list modifications for"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> List[ModificationResponse]:
    """Modification history for a service item, newest first."""
    modifications = ModificationService(db).list_modifications(service_item_id)
    return [to_modification_response(m) for m in modifications]


@admin_router.patch("/{modification_id}", response_model=ModificationResponse)
def respond_as_admin(
    modification_id: UUID,
    payload: RespondModificationRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
) -> ModificationResponse:
    modification = ModificationService(db, notifications).respond_to_modification(
        modification_id, payload.approved, admin.id, payload.notes
    )
    return to_modification_response(modification)
