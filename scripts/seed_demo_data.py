from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from tixgo.domain.moderation import UserRole, VerificationStatus
from tixgo.infrastructure.auth.identity import issue_token
from tixgo.infrastructure.db.models import Base, Ticket, User
from tixgo.infrastructure.db.session import engine, get_db_session


ADMIN_EMAIL = "admin@tixgo.test"
VENDOR_EMAIL = "vendor@tixgo.test"
CUSTOMER_EMAIL = "rider@tixgo.test"


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    dhaka = timezone(timedelta(hours=6))
    now_local = datetime.now(dhaka)
    target = now_local + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


def seed_users(db) -> None:
    user_defs = [
        {"email": ADMIN_EMAIL, "name": "Site Admin", "role": UserRole.ADMIN},
        {"email": VENDOR_EMAIL, "name": "Green Line Paribahan", "role": UserRole.VENDOR},
        {"email": CUSTOMER_EMAIL, "name": "Demo Rider", "role": UserRole.USER},
    ]

    for item in user_defs:
        existing = db.execute(
            select(User).where(User.email == item["email"])
        ).scalar_one_or_none()
        if existing:
            existing.name = item["name"]
            existing.role = item["role"]
            existing.is_fraud = False
            continue

        db.add(User(email=item["email"], name=item["name"], role=item["role"], is_fraud=False))


def seed_tickets(db) -> None:
    ticket_defs = [
        {
            "title": "Dhaka to Chittagong Night Coach",
            "origin": "Dhaka",
            "destination": "Chittagong",
            "transport_type": "bus",
            "departure": _dt(days_from_now=5, hour=22, minute=30),
            "price": Decimal("1200.00"),
            "quantity": 40,
            "perks": ["AC", "Water"],
            "advertised": True,
        },
        {
            "title": "Dhaka to Sylhet Intercity",
            "origin": "Dhaka",
            "destination": "Sylhet",
            "transport_type": "train",
            "departure": _dt(days_from_now=7, hour=6, minute=40),
            "price": Decimal("650.00"),
            "quantity": 120,
            "perks": ["Snacks"],
            "advertised": False,
        },
        {
            "title": "Dhaka to Barisal Launch",
            "origin": "Dhaka",
            "destination": "Barisal",
            "transport_type": "launch",
            "departure": _dt(days_from_now=3, hour=20, minute=0),
            "price": Decimal("2500.00"),
            "quantity": 12,
            "perks": ["Cabin", "Dinner"],
            "advertised": False,
        },
    ]

    for item in ticket_defs:
        existing = db.execute(
            select(Ticket)
            .where(Ticket.vendor_email == VENDOR_EMAIL)
            .where(Ticket.title == item["title"])
        ).scalar_one_or_none()
        if existing:
            existing.departure = item["departure"]
            existing.price = item["price"]
            existing.quantity = item["quantity"]
            existing.verification_status = VerificationStatus.APPROVED
            existing.hidden = False
            continue

        db.add(
            Ticket(
                vendor_email=VENDOR_EMAIL,
                vendor_name="Green Line Paribahan",
                verification_status=VerificationStatus.APPROVED,
                hidden=False,
                **item,
            )
        )


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with get_db_session() as db:
        seed_users(db)
        seed_tickets(db)

    print("Seed complete: admin, vendor, rider and 3 approved tickets added.")
    for email in (ADMIN_EMAIL, VENDOR_EMAIL, CUSTOMER_EMAIL):
        print(f"{email}: Bearer {issue_token(email)}")


if __name__ == "__main__":
    main()
