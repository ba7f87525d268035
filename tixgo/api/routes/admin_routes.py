from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tixgo.api.dependencies import get_caller, get_db
from tixgo.api.schemas.schemas import (
    AdvertiseRequest,
    FraudResponse,
    TicketResponse,
    UserResponse,
)
from tixgo.application.moderation_service import ModerationService
from tixgo.domain.moderation import UserRole
from tixgo.infrastructure.auth.identity import Caller


router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/users", response_model=list[UserResponse])
def list_users(
    role: UserRole | None = None,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    users = ModerationService(db).list_users(caller, role)
    return [UserResponse.model_validate(user) for user in users]


@router.patch("/users/{user_id}/make-admin", response_model=UserResponse)
def make_admin(
    user_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return UserResponse.model_validate(ModerationService(db).make_admin(caller, user_id))


@router.patch("/users/{user_id}/make-vendor", response_model=UserResponse)
def make_vendor(
    user_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return UserResponse.model_validate(ModerationService(db).make_vendor(caller, user_id))


@router.patch("/users/{user_id}/mark-fraud", response_model=FraudResponse)
def mark_fraud(
    user_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    hidden = ModerationService(db).mark_vendor_fraud(caller, user_id)
    return FraudResponse(success=True, hidden_tickets=hidden)


@router.patch("/tickets/{ticket_id}/approve", response_model=TicketResponse)
def approve_ticket(
    ticket_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return TicketResponse.model_validate(ModerationService(db).approve_ticket(caller, ticket_id))


@router.patch("/tickets/{ticket_id}/reject", response_model=TicketResponse)
def reject_ticket(
    ticket_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return TicketResponse.model_validate(ModerationService(db).reject_ticket(caller, ticket_id))


@router.patch("/tickets/{ticket_id}/advertise", response_model=TicketResponse)
def advertise_ticket(
    ticket_id: str,
    request: AdvertiseRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    ticket = ModerationService(db).set_advertised(caller, ticket_id, request.advertised)
    return TicketResponse.model_validate(ticket)
