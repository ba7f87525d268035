# tixgo/infrastructure/repositories/booking_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import select, update

from tixgo.infrastructure.db.models import Booking, Ticket
from tixgo.domain.state_machine import BookingStatus


# Timestamp column stamped when a booking enters each state.
_STATUS_TIMESTAMPS = {
    BookingStatus.ACCEPTED: "accepted_at",
    BookingStatus.REJECTED: "rejected_at",
    BookingStatus.PAID: "paid_at",
    BookingStatus.CANCELLED: "cancelled_at",
}


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
    ) -> Booking | None:

        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def create_booking(
        self,
        ticket: Ticket,
        customer_email: str,
        quantity: int,
        created_at: datetime,
    ) -> Booking:

        # Snapshot vendor, title and price so later ticket edits never reprice it.
        booking = Booking(
            ticket_id=ticket.id,
            customer_email=customer_email,
            vendor_email=ticket.vendor_email,
            title=ticket.title,
            price=ticket.price,
            quantity=quantity,
            status=BookingStatus.PENDING,
            created_at=created_at,
        )

        self.db.add(booking)
        self.db.flush()
        return booking

    def transition(
        self,
        booking_id: str,
        from_status: BookingStatus,
        to_status: BookingStatus,
        at: datetime,
    ) -> bool:
        """
        Compare-and-set on status. Returns False when the booking was not
        in `from_status`, meaning another request already moved it.
        """
        values = {"status": to_status}
        stamp = _STATUS_TIMESTAMPS.get(to_status)
        if stamp:
            values[stamp] = at

        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .where(Booking.status == from_status)
            .values(**values)
            .returning(Booking.id)
        )
        return self.db.execute(stmt).scalar_one_or_none() is not None

    def set_checkout_session(self, booking_id: str, session_id: str) -> None:
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .values(checkout_session_id=session_id)
        )
        self.db.execute(stmt)

    def list_for_customer(self, customer_email: str) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.customer_email == customer_email)
            .order_by(Booking.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_for_vendor(self, vendor_email: str) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.vendor_email == vendor_email)
            .order_by(Booking.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())
