from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import os
from typing import Callable

from sqlalchemy.orm import Session

from tixgo.application.booking_service import BookingService, utc_now
from tixgo.domain.exceptions import (
    AlreadyPaidError,
    DeparturePassedError,
    ForbiddenError,
    InvalidStateTransitionError,
    NotAcceptedError,
    NotFoundError,
    PaymentNotCompletedError,
    ValidationError,
)
from tixgo.domain.money import from_minor_units, to_minor_units
from tixgo.domain.state_machine import BookingStatus
from tixgo.infrastructure.db.models import Booking, Payment
from tixgo.infrastructure.payments.checkout_provider import (
    CheckoutProvider,
    CheckoutSession,
    LineItem,
)
from tixgo.infrastructure.repositories.payment_repository import PaymentRepository
from tixgo.infrastructure.repositories.ticket_repository import TicketRepository


logger = logging.getLogger(__name__)

BACKEND_DOMAIN = os.getenv("BACKEND_DOMAIN", "http://localhost:8000")
SITE_DOMAIN = os.getenv("SITE_DOMAIN", "http://localhost:5173").rstrip("/")

# Webhook events that finalize or abandon a checkout.
PAID_EVENTS = {"payment_link.paid"}
ABANDONED_EVENTS = {"payment_link.cancelled", "payment_link.expired"}


@dataclass(frozen=True)
class VerificationResult:
    booking: Booking
    payment: Payment
    newly_recorded: bool


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PaymentService:
    """
    Bridges checkout-session results to Booking/Payment writes, exactly once
    per external transaction id.
    """

    def __init__(
        self,
        db: Session,
        provider: CheckoutProvider,
        clock: Callable[[], datetime] = utc_now,
        backend_domain: str = BACKEND_DOMAIN,
        site_domain: str = SITE_DOMAIN,
    ):
        self.db = db
        self.provider = provider
        self.clock = clock
        self.backend_domain = backend_domain.rstrip("/")
        self.site_domain = site_domain.rstrip("/")
        self.bookings = BookingService(db, clock=clock)
        self.ticket_repository = TicketRepository(db)
        self.booking_repository = self.bookings.booking_repository
        self.payment_repository = PaymentRepository(db)

    def create_checkout(self, booking_id: str, caller_email: str) -> CheckoutSession:
        booking = self.bookings.get_booking(booking_id)

        if booking.customer_email != caller_email:
            raise ForbiddenError("Only the booking's customer can pay for it")
        if booking.status == BookingStatus.PAID:
            raise AlreadyPaidError("Booking is already paid")
        if booking.status != BookingStatus.ACCEPTED:
            raise NotAcceptedError("Booking has not been accepted by the vendor")

        ticket = self.ticket_repository.get_by_id(booking.ticket_id)
        if not ticket:
            raise NotFoundError("Ticket not found")
        if _as_utc(ticket.departure) <= self.clock():
            raise DeparturePassedError("Departure time passed. Payment not allowed.")

        if booking.price is None or booking.price <= 0 or booking.quantity <= 0:
            raise ValidationError("Booking price and quantity must be positive")

        if booking.checkout_session_id:
            self._close_previous_session(booking.checkout_session_id)

        line_item = LineItem(
            name=booking.title,
            unit_amount=to_minor_units(booking.price),
            quantity=booking.quantity,
        )
        session = self.provider.create_session(
            line_item=line_item,
            success_url=f"{self.backend_domain}/payments/checkout-success",
            cancel_url=f"{self.site_domain}/payment-cancelled?booking_id={booking.id}",
            metadata={
                "booking_id": booking.id,
                "ticket_id": booking.ticket_id,
                "quantity": booking.quantity,
            },
        )
        self.booking_repository.set_checkout_session(booking.id, session.session_id)

        logger.info(
            "Checkout session %s created for booking %s (amount=%s %s).",
            session.session_id,
            booking.id,
            line_item.total_amount,
            line_item.currency,
        )
        return session

    def verify(self, session_id: str) -> VerificationResult:
        """
        Safe to call any number of times for the same session: the unique
        transaction id makes the payment row the idempotency key.
        """
        session = self.provider.retrieve_session(session_id)

        if not session.is_paid or not session.transaction_ref:
            raise PaymentNotCompletedError(
                f"Checkout session {session_id} is not paid"
            )

        booking_id = session.metadata.get("booking_id")
        if not booking_id:
            raise ValidationError("Checkout session carries no booking reference")
        booking = self.bookings.get_booking(booking_id)

        existing = self.payment_repository.get_by_transaction_id(session.transaction_ref)
        if existing:
            return self._resume_recorded(booking, existing)

        if booking.status != BookingStatus.ACCEPTED:
            if booking.status == BookingStatus.CANCELLED:
                logger.error(
                    "Transaction %s captured for cancelled booking %s; refund required.",
                    session.transaction_ref,
                    booking.id,
                )
            raise InvalidStateTransitionError(
                from_state=booking.status.value,
                to_state=BookingStatus.PAID.value,
            )

        payment = Payment(
            booking_id=booking.id,
            ticket_id=booking.ticket_id,
            customer_email=booking.customer_email,
            amount=from_minor_units(session.amount_total),
            currency=session.currency,
            quantity=booking.quantity,
            transaction_id=session.transaction_ref,
            checkout_session_id=session.session_id,
            paid_at=self.clock(),
        )
        if not self.payment_repository.insert_once(payment):
            existing = self.payment_repository.get_by_transaction_id(
                session.transaction_ref
            )
            return self._resume_recorded(booking, existing)

        booking = self.bookings.finalize_paid(booking.id)

        logger.info(
            "Payment %s recorded for booking %s (transaction=%s, amount=%s %s).",
            payment.id,
            booking.id,
            payment.transaction_id,
            payment.amount,
            payment.currency,
        )
        return VerificationResult(booking=booking, payment=payment, newly_recorded=True)

    def cancel_checkout(self, booking_id: str, caller_email: str) -> Booking:
        """
        Customer abandons checkout. The open link is closed first so it can
        no longer be paid; a link paid in the meantime is recorded instead.
        """
        booking = self.bookings.get_booking(booking_id)
        if booking.customer_email != caller_email:
            raise ForbiddenError("Only the booking's customer can cancel its checkout")

        if booking.status == BookingStatus.ACCEPTED and booking.checkout_session_id:
            session = self.provider.retrieve_session(booking.checkout_session_id)
            if session.is_paid:
                logger.info(
                    "Cancel for booking %s arrived after payment; recording it.",
                    booking.id,
                )
                return self.verify(session.session_id).booking
            if session.is_open:
                self.provider.cancel_session(session.session_id)

        return self.bookings.cancel_booking(booking_id)

    def handle_webhook(self, body: bytes, signature: str | None) -> str:
        event = self.provider.parse_webhook(body, signature)

        if event.event_type in PAID_EVENTS and event.session_id:
            self.verify(event.session_id)
        elif event.event_type in ABANDONED_EVENTS:
            booking_id = event.metadata.get("booking_id")
            if booking_id:
                # The provider already closed the link.
                self.bookings.cancel_booking(booking_id)
        else:
            logger.info("Ignoring provider event %s.", event.event_type)

        return event.event_type

    def _close_previous_session(self, session_id: str) -> None:
        previous = self.provider.retrieve_session(session_id)
        if previous.is_paid:
            raise AlreadyPaidError(
                "A previous checkout for this booking is paid; verify it instead"
            )
        if previous.is_open:
            self.provider.cancel_session(session_id)

    def _resume_recorded(self, booking: Booking, payment: Payment) -> VerificationResult:
        if payment.booking_id != booking.id:
            raise ValidationError(
                "Transaction is already linked with another booking"
            )

        if booking.status == BookingStatus.ACCEPTED:
            # Payment row exists but the booking never reached paid: finish the job.
            logger.warning(
                "Retrying paid transition for booking %s (transaction=%s).",
                booking.id,
                payment.transaction_id,
            )
            booking = self.bookings.finalize_paid(booking.id)
        elif booking.status != BookingStatus.PAID:
            raise InvalidStateTransitionError(
                from_state=booking.status.value,
                to_state=BookingStatus.PAID.value,
            )

        return VerificationResult(booking=booking, payment=payment, newly_recorded=False)
