import logging

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from tixgo.api.dependencies import get_caller, get_checkout_provider, get_db
from tixgo.api.schemas.schemas import (
    BookingRequest,
    BookingResponse,
    CheckoutRequest,
    CheckoutResponse,
    PaymentResponse,
    RoleResponse,
    TicketCreate,
    TicketResponse,
    TicketUpdate,
    UserProfileRequest,
    UserResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from tixgo.application.booking_service import BookingService
from tixgo.application.moderation_service import ModerationService
from tixgo.application.payment_service import SITE_DOMAIN, PaymentService
from tixgo.domain.exceptions import (
    ForbiddenError,
    PaymentNotCompletedError,
    TixgoError,
)
from tixgo.domain.moderation import AD_SLOT_CAP, VerificationStatus
from tixgo.infrastructure.auth.identity import Caller
from tixgo.infrastructure.payments.checkout_provider import CheckoutProvider
from tixgo.infrastructure.repositories.payment_repository import PaymentRepository
from tixgo.infrastructure.repositories.ticket_repository import TicketRepository


router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
def health():
    return {"message": "Tixgo backend is running"}


# -----------------------------
# Users
# -----------------------------
@router.post("/users", response_model=UserResponse)
def save_user(
    request: UserProfileRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    profile = request.model_dump(exclude={"email"}, exclude_unset=True)
    user = ModerationService(db).save_profile(caller.email, request.email, profile)
    return UserResponse.model_validate(user)


@router.get("/users/role", response_model=RoleResponse)
def get_user_role(
    email: str,
    caller: Caller = Depends(get_caller),
):
    if email != caller.email:
        raise ForbiddenError("Forbidden access")
    return RoleResponse(role=caller.role, is_fraud=caller.is_fraud)


# -----------------------------
# Tickets
# -----------------------------
@router.post("/tickets", response_model=TicketResponse)
def create_ticket(
    request: TicketCreate,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    ticket = ModerationService(db).create_ticket(
        caller,
        request.model_dump(exclude_none=True),
    )
    return TicketResponse.model_validate(ticket)


@router.get("/tickets", response_model=list[TicketResponse])
def list_tickets(
    verification_status: VerificationStatus | None = None,
    advertised: bool | None = None,
    vendor_email: str | None = None,
    sort: str | None = None,
    limit: int | None = None,
    db: Session = Depends(get_db),
):
    tickets = TicketRepository(db).list_visible(
        verification_status=verification_status,
        advertised=advertised,
        vendor_email=vendor_email,
        newest_first=sort == "newest",
        limit=max(1, min(limit, 200)) if limit else None,
    )
    return [TicketResponse.model_validate(ticket) for ticket in tickets]


@router.get("/tickets/advertised", response_model=list[TicketResponse])
def list_advertised_tickets(
    limit: int = AD_SLOT_CAP,
    db: Session = Depends(get_db),
):
    tickets = TicketRepository(db).list_advertised(limit=max(1, min(limit, AD_SLOT_CAP)))
    return [TicketResponse.model_validate(ticket) for ticket in tickets]


@router.get("/tickets/vendor/{email}", response_model=list[TicketResponse])
def list_vendor_tickets(
    email: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    tickets = ModerationService(db).list_vendor_tickets(caller, email)
    return [TicketResponse.model_validate(ticket) for ticket in tickets]


@router.get("/tickets/{ticket_id}", response_model=TicketResponse)
def get_ticket(ticket_id: str, db: Session = Depends(get_db)):
    ticket = ModerationService(db).get_visible_ticket(ticket_id)
    return TicketResponse.model_validate(ticket)


@router.patch("/tickets/{ticket_id}", response_model=TicketResponse)
def update_ticket(
    ticket_id: str,
    request: TicketUpdate,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    ticket = ModerationService(db).update_ticket(
        caller,
        ticket_id,
        request.model_dump(exclude_unset=True),
    )
    return TicketResponse.model_validate(ticket)


@router.delete("/tickets/{ticket_id}")
def delete_ticket(
    ticket_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    ModerationService(db).delete_ticket(caller, ticket_id)
    return {"success": True}


# -----------------------------
# Bookings
# -----------------------------
@router.post("/bookings", response_model=BookingResponse)
def create_booking(
    request: BookingRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    booking = BookingService(db).create_booking(
        caller_email=caller.email,
        ticket_id=request.ticket_id,
        quantity=request.quantity,
        customer_email=request.customer_email,
    )
    return BookingResponse.model_validate(booking)


@router.get("/bookings", response_model=list[BookingResponse])
def list_bookings(
    email: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    bookings = BookingService(db).list_customer_bookings(caller.email, email)
    return [BookingResponse.model_validate(booking) for booking in bookings]


@router.get("/bookings/vendor/{email}", response_model=list[BookingResponse])
def list_vendor_bookings(
    email: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    bookings = BookingService(db).list_vendor_bookings(caller.email, email)
    return [BookingResponse.model_validate(booking) for booking in bookings]


@router.patch("/bookings/{booking_id}/accept", response_model=BookingResponse)
def accept_booking(
    booking_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    booking = BookingService(db).accept_booking(caller.email, booking_id)
    return BookingResponse.model_validate(booking)


@router.patch("/bookings/{booking_id}/reject", response_model=BookingResponse)
def reject_booking(
    booking_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    booking = BookingService(db).reject_booking(caller.email, booking_id)
    return BookingResponse.model_validate(booking)


# -----------------------------
# Payments
# -----------------------------
@router.post("/payments/checkout", response_model=CheckoutResponse)
def create_checkout(
    request: CheckoutRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    provider: CheckoutProvider = Depends(get_checkout_provider),
):
    session = PaymentService(db, provider).create_checkout(request.booking_id, caller.email)
    return CheckoutResponse(session_id=session.session_id, url=session.url)


@router.post("/payments/verify", response_model=VerifyPaymentResponse)
def verify_payment(
    request: VerifyPaymentRequest,
    db: Session = Depends(get_db),
    provider: CheckoutProvider = Depends(get_checkout_provider),
):
    result = PaymentService(db, provider).verify(request.session_id)
    return VerifyPaymentResponse(
        booking=BookingResponse.model_validate(result.booking),
        payment=PaymentResponse.model_validate(result.payment),
        newly_recorded=result.newly_recorded,
    )


@router.get("/payments/checkout-success")
def checkout_success(
    request: Request,
    db: Session = Depends(get_db),
    provider: CheckoutProvider = Depends(get_checkout_provider),
):
    params = dict(request.query_params)
    session_id = params.get("razorpay_payment_link_id") or params.get("session_id")

    try:
        provider.verify_callback(params)
        if not session_id:
            raise PaymentNotCompletedError("Callback carries no checkout session")
        PaymentService(db, provider).verify(session_id)
    except TixgoError as exc:
        db.rollback()
        logger.warning("Payment success callback failed for %s: %s", session_id, exc)
        return RedirectResponse(f"{SITE_DOMAIN}/payment-failed", status_code=status.HTTP_303_SEE_OTHER)

    return RedirectResponse(f"{SITE_DOMAIN}/payment-success", status_code=status.HTTP_303_SEE_OTHER)


@router.post("/payments/checkout/cancel", response_model=BookingResponse)
def cancel_checkout(
    request: CheckoutRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    provider: CheckoutProvider = Depends(get_checkout_provider),
):
    booking = PaymentService(db, provider).cancel_checkout(request.booking_id, caller.email)
    return BookingResponse.model_validate(booking)


@router.post("/payments/webhook")
async def payment_webhook(
    request: Request,
    x_razorpay_signature: str | None = Header(default=None),
    db: Session = Depends(get_db),
    provider: CheckoutProvider = Depends(get_checkout_provider),
):
    body = await request.body()
    event_type = await run_in_threadpool(
        PaymentService(db, provider).handle_webhook,
        body,
        x_razorpay_signature,
    )
    return {"received": True, "event": event_type}


@router.get("/payments", response_model=list[PaymentResponse])
def list_payments(
    email: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    if email != caller.email:
        raise ForbiddenError("Forbidden")
    payments = PaymentRepository(db).list_for_customer(email)
    return [PaymentResponse.model_validate(payment) for payment in payments]
