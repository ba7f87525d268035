# tixgo/infrastructure/repositories/payment_repository.py

import logging

from sqlalchemy.orm import Session
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from tixgo.infrastructure.db.models import Payment


logger = logging.getLogger(__name__)


class PaymentRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_transaction_id(self, transaction_id: str) -> Payment | None:
        stmt = select(Payment).where(Payment.transaction_id == transaction_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def insert_once(self, payment: Payment) -> bool:
        """
        Insert a payment unless one already exists for its transaction id.

        The insert runs in a SAVEPOINT so that losing the race on the
        unique constraint does not poison the surrounding transaction.
        Returns True if this call created the row.
        """
        try:
            with self.db.begin_nested():
                self.db.add(payment)
        except IntegrityError:
            logger.warning(
                "Payment for transaction %s already recorded by a concurrent request.",
                payment.transaction_id,
            )
            return False
        return True

    def list_for_customer(self, customer_email: str) -> list[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.customer_email == customer_email)
            .order_by(Payment.paid_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())
