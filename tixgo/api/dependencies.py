from functools import lru_cache

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from tixgo.infrastructure.auth.identity import Caller, lookup_caller, verify_bearer
from tixgo.infrastructure.db.session import SessionLocal
from tixgo.infrastructure.payments.checkout_provider import (
    CheckoutProvider,
    razorpay_provider_from_env,
)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_caller(
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> Caller:
    email = verify_bearer(authorization)
    return lookup_caller(db, email)


@lru_cache(maxsize=1)
def get_checkout_provider() -> CheckoutProvider:
    return razorpay_provider_from_env()
