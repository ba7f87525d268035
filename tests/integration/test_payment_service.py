from datetime import datetime, timedelta, timezone
from decimal import Decimal
import json

import pytest
from sqlalchemy import func, select

from tixgo.application.booking_service import BookingService
from tixgo.application.payment_service import PaymentService
from tixgo.domain.exceptions import (
    AlreadyPaidError,
    DeparturePassedError,
    ForbiddenError,
    InvalidStateTransitionError,
    NotAcceptedError,
    PaymentNotCompletedError,
)
from tixgo.domain.state_machine import BookingStatus
from tixgo.infrastructure.db.models import Payment, Ticket


VENDOR = "vendor@tixgo.test"
CUSTOMER = "rider@tixgo.test"


def _payment_count(db):
    return db.execute(select(func.count()).select_from(Payment)).scalar_one()


def _accepted_booking(db, ticket_id, quantity=3):
    bookings = BookingService(db)
    booking = bookings.create_booking(CUSTOMER, ticket_id, quantity, CUSTOMER)
    return bookings.accept_booking(VENDOR, booking.id)


def test_checkout_builds_line_item(db, make_ticket, provider):
    ticket_id = make_ticket(price=Decimal("25.50"))
    booking = _accepted_booking(db, ticket_id, quantity=3)

    session = PaymentService(db, provider, backend_domain="https://api.tixgo.test/").create_checkout(
        booking.id, CUSTOMER
    )

    created = provider.created[0]
    assert session.url.endswith(session.session_id)
    assert created["line_item"].unit_amount == 2550
    assert created["line_item"].quantity == 3
    assert created["metadata"]["booking_id"] == booking.id
    assert created["success_url"] == "https://api.tixgo.test/payments/checkout-success"
    assert created["cancel_url"].endswith(f"booking_id={booking.id}")


def test_checkout_requires_acceptance(db, make_ticket, provider):
    ticket_id = make_ticket()
    booking = BookingService(db).create_booking(CUSTOMER, ticket_id, 1, CUSTOMER)

    with pytest.raises(NotAcceptedError):
        PaymentService(db, provider).create_checkout(booking.id, CUSTOMER)


def test_checkout_only_for_own_booking(db, make_ticket, provider):
    booking = _accepted_booking(db, make_ticket())

    with pytest.raises(ForbiddenError):
        PaymentService(db, provider).create_checkout(booking.id, "stranger@tixgo.test")


def test_checkout_after_departure(db, make_ticket, provider):
    booking = _accepted_booking(db, make_ticket())
    later = datetime.now(timezone.utc) + timedelta(days=30)

    with pytest.raises(DeparturePassedError):
        PaymentService(db, provider, clock=lambda: later).create_checkout(booking.id, CUSTOMER)


def test_verify_records_payment_and_marks_paid(db, make_ticket, provider):
    ticket_id = make_ticket(quantity=5, price=Decimal("25.50"))
    booking = _accepted_booking(db, ticket_id, quantity=3)
    service = PaymentService(db, provider)

    session = service.create_checkout(booking.id, CUSTOMER)
    provider.complete(session.session_id, transaction_ref="pay_001")

    result = service.verify(session.session_id)

    assert result.newly_recorded is True
    assert result.booking.status == BookingStatus.PAID
    assert result.booking.paid_at is not None
    assert result.payment.amount == Decimal("76.50")
    assert result.payment.transaction_id == "pay_001"
    assert result.payment.quantity == 3
    assert _payment_count(db) == 1

    # Paying does not take stock a second time.
    quantity = db.execute(select(Ticket.quantity).where(Ticket.id == ticket_id)).scalar_one()
    assert quantity == 2


def test_verify_twice_records_one_payment(db, make_ticket, provider):
    booking = _accepted_booking(db, make_ticket())
    service = PaymentService(db, provider)
    session = service.create_checkout(booking.id, CUSTOMER)
    provider.complete(session.session_id)

    first = service.verify(session.session_id)
    db.commit()
    second = service.verify(session.session_id)

    assert first.newly_recorded is True
    assert second.newly_recorded is False
    assert second.payment.id == first.payment.id
    assert second.booking.status == BookingStatus.PAID
    assert _payment_count(db) == 1


def test_verify_finishes_half_done_payment(db, make_ticket, provider):
    booking = _accepted_booking(db, make_ticket())
    service = PaymentService(db, provider)
    session = service.create_checkout(booking.id, CUSTOMER)
    provider.complete(session.session_id, transaction_ref="pay_partial")

    # A previous attempt stored the payment but never moved the booking.
    db.add(
        Payment(
            booking_id=booking.id,
            ticket_id=booking.ticket_id,
            customer_email=CUSTOMER,
            amount=Decimal("76.50"),
            currency="INR",
            quantity=booking.quantity,
            transaction_id="pay_partial",
        )
    )
    db.commit()

    result = service.verify(session.session_id)

    assert result.newly_recorded is False
    assert result.booking.status == BookingStatus.PAID
    assert _payment_count(db) == 1


def test_verify_unpaid_session(db, make_ticket, provider):
    booking = _accepted_booking(db, make_ticket())
    service = PaymentService(db, provider)
    session = service.create_checkout(booking.id, CUSTOMER)

    with pytest.raises(PaymentNotCompletedError):
        service.verify(session.session_id)

    assert _payment_count(db) == 0


def test_cancel_checkout_closes_the_link(db, make_ticket, provider):
    ticket_id = make_ticket(quantity=5)
    booking = _accepted_booking(db, ticket_id, quantity=2)
    service = PaymentService(db, provider)
    session = service.create_checkout(booking.id, CUSTOMER)

    cancelled = service.cancel_checkout(booking.id, CUSTOMER)

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.checkout_session_id == session.session_id
    assert provider.cancelled == [session.session_id]
    quantity = db.execute(select(Ticket.quantity).where(Ticket.id == ticket_id)).scalar_one()
    assert quantity == 5


def test_cancel_checkout_only_by_customer(db, make_ticket, provider):
    booking = _accepted_booking(db, make_ticket())
    service = PaymentService(db, provider)
    service.create_checkout(booking.id, CUSTOMER)

    with pytest.raises(ForbiddenError):
        service.cancel_checkout(booking.id, VENDOR)

    assert BookingService(db).get_booking(booking.id).status == BookingStatus.ACCEPTED
    assert provider.cancelled == []


def test_cancel_after_link_was_paid_records_payment(db, make_ticket, provider):
    ticket_id = make_ticket(quantity=5)
    booking = _accepted_booking(db, ticket_id, quantity=2)
    service = PaymentService(db, provider)
    session = service.create_checkout(booking.id, CUSTOMER)
    provider.complete(session.session_id, transaction_ref="pay_before_cancel")

    result = service.cancel_checkout(booking.id, CUSTOMER)

    assert result.status == BookingStatus.PAID
    assert provider.cancelled == []
    assert _payment_count(db) == 1
    quantity = db.execute(select(Ticket.quantity).where(Ticket.id == ticket_id)).scalar_one()
    assert quantity == 3


def test_new_checkout_closes_previous_link(db, make_ticket, provider):
    booking = _accepted_booking(db, make_ticket())
    service = PaymentService(db, provider)

    first = service.create_checkout(booking.id, CUSTOMER)
    second = service.create_checkout(booking.id, CUSTOMER)

    assert provider.cancelled == [first.session_id]
    assert BookingService(db).get_booking(booking.id).checkout_session_id == second.session_id


def test_new_checkout_refused_when_previous_link_is_paid(db, make_ticket, provider):
    booking = _accepted_booking(db, make_ticket())
    service = PaymentService(db, provider)
    first = service.create_checkout(booking.id, CUSTOMER)
    provider.complete(first.session_id)

    with pytest.raises(AlreadyPaidError):
        service.create_checkout(booking.id, CUSTOMER)


def test_verify_for_expired_booking_is_rejected(db, make_ticket, provider, caplog):
    booking = _accepted_booking(db, make_ticket())
    service = PaymentService(db, provider)
    session = service.create_checkout(booking.id, CUSTOMER)
    expired = json.dumps({"event": "payment_link.expired", "notes": {"booking_id": booking.id}})
    service.handle_webhook(expired.encode(), "sig")
    provider.complete(session.session_id)

    with pytest.raises(InvalidStateTransitionError):
        service.verify(session.session_id)

    assert _payment_count(db) == 0
    assert any("refund required" in message for message in caplog.messages)


def test_checkout_on_paid_booking(db, make_ticket, provider):
    booking = _accepted_booking(db, make_ticket())
    service = PaymentService(db, provider)
    session = service.create_checkout(booking.id, CUSTOMER)
    provider.complete(session.session_id)
    service.verify(session.session_id)

    with pytest.raises(AlreadyPaidError):
        service.create_checkout(booking.id, CUSTOMER)


def test_cancel_checkout_after_payment_is_noop(db, make_ticket, provider):
    ticket_id = make_ticket(quantity=5)
    booking = _accepted_booking(db, ticket_id, quantity=2)
    service = PaymentService(db, provider)
    session = service.create_checkout(booking.id, CUSTOMER)
    provider.complete(session.session_id)
    service.verify(session.session_id)

    result = service.cancel_checkout(booking.id, CUSTOMER)

    assert result.status == BookingStatus.PAID
    quantity = db.execute(select(Ticket.quantity).where(Ticket.id == ticket_id)).scalar_one()
    assert quantity == 3


def test_webhook_paid_event_finalizes(db, make_ticket, provider):
    booking = _accepted_booking(db, make_ticket())
    service = PaymentService(db, provider)
    session = service.create_checkout(booking.id, CUSTOMER)
    provider.complete(session.session_id)

    body = json.dumps({"event": "payment_link.paid", "session_id": session.session_id})
    assert service.handle_webhook(body.encode(), "sig") == "payment_link.paid"

    assert BookingService(db).get_booking(booking.id).status == BookingStatus.PAID
    assert _payment_count(db) == 1


def test_webhook_expired_event_cancels(db, make_ticket, provider):
    booking = _accepted_booking(db, make_ticket())
    service = PaymentService(db, provider)

    body = json.dumps({"event": "payment_link.expired", "notes": {"booking_id": booking.id}})
    service.handle_webhook(body.encode(), "sig")

    assert BookingService(db).get_booking(booking.id).status == BookingStatus.CANCELLED


def test_webhook_ignores_other_events(db, provider):
    body = json.dumps({"event": "payment.authorized"})
    assert PaymentService(db, provider).handle_webhook(body.encode(), "sig") == "payment.authorized"
