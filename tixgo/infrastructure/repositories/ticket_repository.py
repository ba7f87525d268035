# tixgo/infrastructure/repositories/ticket_repository.py

import logging

from sqlalchemy.orm import Session, aliased
from sqlalchemy import func, select, update

from tixgo.infrastructure.db.models import Ticket
from tixgo.domain.exceptions import InsufficientStockError
from tixgo.domain.moderation import AD_SLOT_CAP, VerificationStatus


logger = logging.getLogger(__name__)


class TicketRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, ticket_id: str) -> Ticket | None:
        stmt = select(Ticket).where(Ticket.id == ticket_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_visible(self, ticket_id: str) -> Ticket | None:
        stmt = (
            select(Ticket)
            .where(Ticket.id == ticket_id)
            .where(Ticket.hidden.is_(False))
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_visible(
        self,
        verification_status: VerificationStatus | None = None,
        advertised: bool | None = None,
        vendor_email: str | None = None,
        newest_first: bool = False,
        limit: int | None = None,
    ) -> list[Ticket]:
        stmt = select(Ticket).where(Ticket.hidden.is_(False))

        if verification_status is not None:
            stmt = stmt.where(Ticket.verification_status == verification_status)
        if advertised is not None:
            stmt = stmt.where(Ticket.advertised.is_(advertised))
        if vendor_email:
            stmt = stmt.where(Ticket.vendor_email == vendor_email)
        if newest_first:
            stmt = stmt.order_by(Ticket.created_at.desc())
        if limit:
            stmt = stmt.limit(limit)

        return list(self.db.execute(stmt).scalars().all())

    def list_advertised(self, limit: int = AD_SLOT_CAP) -> list[Ticket]:
        return self.list_visible(
            verification_status=VerificationStatus.APPROVED,
            advertised=True,
            limit=limit,
        )

    def add(self, ticket: Ticket) -> Ticket:
        self.db.add(ticket)
        self.db.flush()
        return ticket

    def delete(self, ticket: Ticket) -> None:
        self.db.delete(ticket)
        self.db.flush()

    # -----------------------------
    # Inventory
    # -----------------------------
    def reserve(self, ticket_id: str, quantity: int) -> int:
        """
        Decrement available quantity only if enough stock is left.
        One conditional UPDATE; no read-then-write.
        Returns the remaining quantity.
        """
        stmt = (
            update(Ticket)
            .where(Ticket.id == ticket_id)
            .where(Ticket.quantity >= quantity)
            .values(quantity=Ticket.quantity - quantity)
            .returning(Ticket.quantity)
        )
        remaining = self.db.execute(stmt).scalar_one_or_none()

        if remaining is None:
            raise InsufficientStockError(
                f"Not enough tickets available for ticket {ticket_id}"
            )
        return remaining

    def release(self, ticket_id: str, quantity: int) -> int | None:
        """
        Give reserved quantity back. Unconditional increment.
        Returns the new quantity, or None if the ticket no longer exists.
        """
        stmt = (
            update(Ticket)
            .where(Ticket.id == ticket_id)
            .values(quantity=Ticket.quantity + quantity)
            .returning(Ticket.quantity)
        )
        restored = self.db.execute(stmt).scalar_one_or_none()

        if restored is None:
            logger.warning(
                "Released %s seats for missing ticket %s; nothing restored.",
                quantity,
                ticket_id,
            )
        return restored

    # -----------------------------
    # Moderation
    # -----------------------------
    def set_verification_status(
        self,
        ticket_id: str,
        status: VerificationStatus,
    ) -> None:
        stmt = (
            update(Ticket)
            .where(Ticket.id == ticket_id)
            .values(verification_status=status)
        )
        self.db.execute(stmt)

    def count_advertised(self) -> int:
        stmt = (
            select(func.count())
            .select_from(Ticket)
            .where(Ticket.advertised.is_(True))
            .where(Ticket.verification_status == VerificationStatus.APPROVED)
        )
        return self.db.execute(stmt).scalar_one()

    def try_advertise(self, ticket_id: str) -> bool:
        """
        Turn advertising on only while fewer than AD_SLOT_CAP other approved
        tickets are advertised. The count is evaluated inside the same UPDATE.
        """
        other = aliased(Ticket)
        advertised_elsewhere = (
            select(func.count())
            .select_from(other)
            .where(other.advertised.is_(True))
            .where(other.verification_status == VerificationStatus.APPROVED)
            .where(other.id != ticket_id)
            .scalar_subquery()
        )
        stmt = (
            update(Ticket)
            .where(Ticket.id == ticket_id)
            .where(Ticket.verification_status == VerificationStatus.APPROVED)
            .where(advertised_elsewhere < AD_SLOT_CAP)
            .values(advertised=True)
            .returning(Ticket.id)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).scalar_one_or_none() is not None

    def stop_advertising(self, ticket_id: str) -> None:
        stmt = (
            update(Ticket)
            .where(Ticket.id == ticket_id)
            .values(advertised=False)
        )
        self.db.execute(stmt)

    def hide_all_for_vendor(self, vendor_email: str) -> int:
        stmt = (
            update(Ticket)
            .where(Ticket.vendor_email == vendor_email)
            .values(hidden=True)
            .returning(Ticket.id)
        )
        return len(self.db.execute(stmt).scalars().all())
