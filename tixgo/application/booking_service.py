from datetime import datetime, timezone
import logging
from typing import Callable

from sqlalchemy.orm import Session

from tixgo.domain.exceptions import (
    ForbiddenError,
    InvalidStateTransitionError,
    NotApprovedError,
    NotFoundError,
    ValidationError,
)
from tixgo.domain.moderation import VerificationStatus
from tixgo.domain.state_machine import BookingStateMachine, BookingStatus
from tixgo.infrastructure.db.models import Booking
from tixgo.infrastructure.repositories.booking_repository import BookingRepository
from tixgo.infrastructure.repositories.ticket_repository import TicketRepository


logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BookingService:
    """Application service coordinating the booking lifecycle and stock."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock
        self.booking_repository = BookingRepository(db)
        self.ticket_repository = TicketRepository(db)

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise NotFoundError("Booking not found")
        return booking

    def create_booking(
        self,
        caller_email: str,
        ticket_id: str,
        quantity: int,
        customer_email: str,
    ) -> Booking:
        if customer_email != caller_email:
            raise ForbiddenError("Bookings can only be created for yourself")
        if not ticket_id or quantity is None or quantity <= 0:
            raise ValidationError("ticket_id and a positive quantity are required")

        ticket = self.ticket_repository.get_by_id(ticket_id)
        if not ticket:
            raise NotFoundError("Ticket not found")
        if ticket.verification_status != VerificationStatus.APPROVED or ticket.hidden:
            raise NotApprovedError("Ticket is not approved for booking")

        # Reserve-at-creation: stock is held from now until paid, rejected or cancelled.
        remaining = self.ticket_repository.reserve(ticket.id, quantity)
        booking = self.booking_repository.create_booking(
            ticket=ticket,
            customer_email=customer_email,
            quantity=quantity,
            created_at=self.clock(),
        )

        logger.info(
            "Booking %s created for ticket %s (qty=%s, remaining=%s).",
            booking.id,
            ticket.id,
            quantity,
            remaining,
        )
        return booking

    def accept_booking(self, caller_email: str, booking_id: str) -> Booking:
        booking = self._get_owned_by_vendor(caller_email, booking_id)
        self._transition(booking, BookingStatus.ACCEPTED)
        return self.get_booking(booking_id)

    def reject_booking(self, caller_email: str, booking_id: str) -> Booking:
        booking = self._get_owned_by_vendor(caller_email, booking_id)
        self._transition(booking, BookingStatus.REJECTED)
        return self.get_booking(booking_id)

    def cancel_booking(self, booking_id: str) -> Booking:
        """
        Cancel after a checkout was abandoned. Provider callbacks can be
        delivered more than once, so cancelling a booking that is already
        cancelled or paid is a no-op.
        """
        booking = self.get_booking(booking_id)

        if booking.status in (BookingStatus.CANCELLED, BookingStatus.PAID):
            logger.info(
                "Ignoring cancel for booking %s already %s.",
                booking.id,
                booking.status.value,
            )
            return booking

        self._transition(booking, BookingStatus.CANCELLED, tolerate_race=True)
        return self.get_booking(booking_id)

    def finalize_paid(self, booking_id: str) -> Booking:
        """Mark an accepted booking as paid. Stock was reserved at creation."""
        booking = self.get_booking(booking_id)
        self._transition(booking, BookingStatus.PAID)
        return self.get_booking(booking_id)

    def list_customer_bookings(self, caller_email: str, email: str) -> list[Booking]:
        if email != caller_email:
            raise ForbiddenError("Forbidden")
        return self.booking_repository.list_for_customer(email)

    def list_vendor_bookings(self, caller_email: str, email: str) -> list[Booking]:
        if email != caller_email:
            raise ForbiddenError("Forbidden")
        return self.booking_repository.list_for_vendor(email)

    def _get_owned_by_vendor(self, caller_email: str, booking_id: str) -> Booking:
        booking = self.get_booking(booking_id)
        if booking.vendor_email != caller_email:
            raise ForbiddenError("Only the ticket's vendor can decide this booking")
        return booking

    def _transition(
        self,
        booking: Booking,
        to_status: BookingStatus,
        tolerate_race: bool = False,
    ) -> bool:
        from_status = booking.status
        BookingStateMachine.validate_transition(from_status, to_status)

        moved = self.booking_repository.transition(
            booking_id=booking.id,
            from_status=from_status,
            to_status=to_status,
            at=self.clock(),
        )
        if not moved:
            # Lost the compare-and-set to a concurrent request.
            current = self.get_booking(booking.id)
            if tolerate_race and current.status in (
                BookingStatus.CANCELLED,
                BookingStatus.PAID,
            ):
                return False
            raise InvalidStateTransitionError(
                from_state=current.status.value,
                to_state=to_status.value,
            )

        # Only the request that won the status write releases the reservation.
        if BookingStateMachine.releases_stock(to_status):
            self.ticket_repository.release(booking.ticket_id, booking.quantity)

        logger.info(
            "Booking %s moved %s -> %s.",
            booking.id,
            from_status.value,
            to_status.value,
        )
        return True
