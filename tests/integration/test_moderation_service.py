from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from tixgo.application.booking_service import BookingService
from tixgo.application.moderation_service import ModerationService
from tixgo.domain.exceptions import (
    ForbiddenError,
    InvalidStateTransitionError,
    NotApprovedError,
    SlotLimitExceededError,
    ValidationError,
    VendorSuspendedError,
)
from tixgo.domain.moderation import UserRole, VerificationStatus
from tixgo.infrastructure.auth.identity import Caller
from tixgo.infrastructure.db.models import Ticket


ADMIN = Caller(email="admin@tixgo.test", role=UserRole.ADMIN)
VENDOR = Caller(email="vendor@tixgo.test", role=UserRole.VENDOR)


def _ticket_payload(**overrides):
    payload = {
        "vendor_email": VENDOR.email,
        "vendor_name": "Green Line",
        "title": "Night coach",
        "origin": "Dhaka",
        "destination": "Sylhet",
        "transport_type": "bus",
        "departure": datetime.now(timezone.utc) + timedelta(days=3),
        "price": Decimal("12.00"),
        "quantity": 40,
    }
    payload.update(overrides)
    return payload


def _hidden_flags(db, vendor_email):
    stmt = select(Ticket.hidden).where(Ticket.vendor_email == vendor_email)
    return list(db.execute(stmt).scalars().all())


# ---------------------
# ADVERTISING
# ---------------------

def test_sixth_advert_succeeds_seventh_fails(db, make_ticket):
    ticket_ids = [make_ticket(title=f"Route {i}") for i in range(7)]
    service = ModerationService(db)

    for ticket_id in ticket_ids[:6]:
        assert service.set_advertised(ADMIN, ticket_id, True).advertised is True

    with pytest.raises(SlotLimitExceededError):
        service.set_advertised(ADMIN, ticket_ids[6], True)

    assert service.ticket_repository.count_advertised() == 6


def test_readvertising_inside_full_slots_is_allowed(db, make_ticket):
    ticket_ids = [make_ticket(title=f"Route {i}") for i in range(6)]
    service = ModerationService(db)
    for ticket_id in ticket_ids:
        service.set_advertised(ADMIN, ticket_id, True)

    assert service.set_advertised(ADMIN, ticket_ids[0], True).advertised is True


def test_freeing_a_slot_lets_another_in(db, make_ticket):
    ticket_ids = [make_ticket(title=f"Route {i}") for i in range(7)]
    service = ModerationService(db)
    for ticket_id in ticket_ids[:6]:
        service.set_advertised(ADMIN, ticket_id, True)

    assert service.set_advertised(ADMIN, ticket_ids[0], False).advertised is False
    assert service.set_advertised(ADMIN, ticket_ids[6], True).advertised is True


def test_advertising_logs_slot_usage(db, make_ticket, caplog):
    ticket_ids = [make_ticket(title=f"Route {i}") for i in range(2)]
    service = ModerationService(db)

    with caplog.at_level("INFO", logger="tixgo.application.moderation_service"):
        for ticket_id in ticket_ids:
            service.set_advertised(ADMIN, ticket_id, True)

    assert f"Ticket {ticket_ids[1]} is now advertised (2/6 slots used)." in caplog.messages


def test_unapproved_ticket_cannot_be_advertised(db, make_ticket):
    ticket_id = make_ticket(status=VerificationStatus.PENDING)

    with pytest.raises(NotApprovedError):
        ModerationService(db).set_advertised(ADMIN, ticket_id, True)


def test_advertising_requires_admin(db, make_ticket):
    ticket_id = make_ticket()

    with pytest.raises(ForbiddenError):
        ModerationService(db).set_advertised(VENDOR, ticket_id, True)


def test_advertised_flag_must_be_boolean(db, make_ticket):
    ticket_id = make_ticket()

    with pytest.raises(ValidationError):
        ModerationService(db).set_advertised(ADMIN, ticket_id, "yes")


# ---------------------
# VERDICTS
# ---------------------

def test_approve_then_reject(db, make_ticket):
    ticket_id = make_ticket(status=VerificationStatus.PENDING)
    service = ModerationService(db)

    assert service.approve_ticket(ADMIN, ticket_id).verification_status == VerificationStatus.APPROVED
    assert service.reject_ticket(ADMIN, ticket_id).verification_status == VerificationStatus.REJECTED

    with pytest.raises(InvalidStateTransitionError):
        service.approve_ticket(ADMIN, ticket_id)


# ---------------------
# FRAUD
# ---------------------

def test_fraud_hides_only_that_vendors_tickets(db, make_user, make_ticket):
    fraud_id = make_user("fraud@tixgo.test", role=UserRole.VENDOR)
    make_user("honest@tixgo.test", role=UserRole.VENDOR)
    make_ticket(vendor_email="fraud@tixgo.test")
    make_ticket(vendor_email="fraud@tixgo.test", status=VerificationStatus.PENDING)
    make_ticket(vendor_email="honest@tixgo.test")

    hidden = ModerationService(db).mark_vendor_fraud(ADMIN, fraud_id)

    assert hidden == 2
    assert _hidden_flags(db, "fraud@tixgo.test") == [True, True]
    assert _hidden_flags(db, "honest@tixgo.test") == [False]


def test_fraud_vendor_cannot_publish(db, make_user):
    user_id = make_user(VENDOR.email, role=UserRole.VENDOR)
    service = ModerationService(db)
    service.mark_vendor_fraud(ADMIN, user_id)

    suspended = Caller(email=VENDOR.email, role=UserRole.VENDOR, is_fraud=True)
    with pytest.raises(VendorSuspendedError):
        service.create_ticket(suspended, _ticket_payload())


def test_only_vendors_can_be_flagged(db, make_user):
    user_id = make_user("rider@tixgo.test")

    with pytest.raises(ValidationError):
        ModerationService(db).mark_vendor_fraud(ADMIN, user_id)


def test_make_vendor_clears_fraud(db, make_user):
    user_id = make_user(VENDOR.email, role=UserRole.VENDOR, is_fraud=True)

    user = ModerationService(db).make_vendor(ADMIN, user_id)

    assert user.role == UserRole.VENDOR
    assert user.is_fraud is False


def test_role_changes_require_admin(db, make_user):
    user_id = make_user("rider@tixgo.test")

    with pytest.raises(ForbiddenError):
        ModerationService(db).make_admin(VENDOR, user_id)


# ---------------------
# VENDOR TICKETS
# ---------------------

def test_vendor_creates_pending_ticket(db):
    ticket = ModerationService(db).create_ticket(VENDOR, _ticket_payload())

    assert ticket.verification_status == VerificationStatus.PENDING
    assert ticket.advertised is False
    assert ticket.hidden is False


def test_plain_user_cannot_create_ticket(db):
    with pytest.raises(ForbiddenError):
        ModerationService(db).create_ticket(Caller(email=VENDOR.email), _ticket_payload())


def test_create_rejects_moderation_fields(db):
    with pytest.raises(ValidationError):
        ModerationService(db).create_ticket(VENDOR, _ticket_payload(advertised=True))


def test_create_requires_core_fields(db):
    payload = _ticket_payload()
    del payload["departure"]

    with pytest.raises(ValidationError):
        ModerationService(db).create_ticket(VENDOR, payload)


def test_ticket_edit_does_not_reprice_bookings(db, make_ticket):
    ticket_id = make_ticket(price=Decimal("25.50"))
    booking = BookingService(db).create_booking("rider@tixgo.test", ticket_id, 1, "rider@tixgo.test")

    ModerationService(db).update_ticket(VENDOR, ticket_id, {"price": Decimal("99.00")})

    assert BookingService(db).get_booking(booking.id).price == Decimal("25.50")


def test_rejected_ticket_is_frozen(db, make_ticket):
    ticket_id = make_ticket(status=VerificationStatus.REJECTED)
    service = ModerationService(db)

    with pytest.raises(ForbiddenError):
        service.update_ticket(VENDOR, ticket_id, {"title": "New"})
    with pytest.raises(ForbiddenError):
        service.delete_ticket(VENDOR, ticket_id)


def test_vendor_edits_only_own_tickets(db, make_ticket):
    ticket_id = make_ticket()
    intruder = Caller(email="other@tixgo.test", role=UserRole.VENDOR)

    with pytest.raises(ForbiddenError):
        ModerationService(db).update_ticket(intruder, ticket_id, {"title": "Mine now"})


def test_update_rejects_negative_quantity(db, make_ticket):
    ticket_id = make_ticket()

    with pytest.raises(ValidationError):
        ModerationService(db).update_ticket(VENDOR, ticket_id, {"quantity": -1})


def test_save_profile_self_only(db):
    service = ModerationService(db)

    user = service.save_profile("rider@tixgo.test", "rider@tixgo.test", {"name": "Rider"})
    assert user.role == UserRole.USER

    with pytest.raises(ForbiddenError):
        service.save_profile("rider@tixgo.test", "admin@tixgo.test", {"name": "x"})
