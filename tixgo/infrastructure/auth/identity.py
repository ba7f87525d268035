# tixgo/infrastructure/auth/identity.py

from dataclasses import dataclass
import os

import jwt
from sqlalchemy.orm import Session

from tixgo.domain.exceptions import ForbiddenError, UnauthenticatedError
from tixgo.domain.moderation import UserRole
from tixgo.infrastructure.repositories.user_repository import UserRepository


AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET")
AUTH_JWT_ALGORITHM = os.getenv("AUTH_JWT_ALGORITHM", "HS256")
AUTH_JWT_AUDIENCE = os.getenv("AUTH_JWT_AUDIENCE") or None


def require_jwt_secret() -> str:
    """Checked at startup; there is no default signing key."""
    if not AUTH_JWT_SECRET:
        raise RuntimeError("AUTH_JWT_SECRET not configured. Set it before starting the API.")
    return AUTH_JWT_SECRET


@dataclass(frozen=True)
class Caller:
    """Verified identity plus the role facts the core needs."""

    email: str
    role: UserRole = UserRole.USER
    is_fraud: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_vendor(self) -> bool:
        return self.role == UserRole.VENDOR

    def require_admin(self) -> None:
        if not self.is_admin:
            raise ForbiddenError("Admin access required")


def verify_bearer(authorization: str | None) -> str:
    """Return the verified email carried by a bearer token."""
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthenticatedError("Unauthorized")

    token = authorization.split(" ", 1)[1].strip()
    options = {"verify_aud": AUTH_JWT_AUDIENCE is not None}

    try:
        payload = jwt.decode(
            token,
            require_jwt_secret(),
            algorithms=[AUTH_JWT_ALGORITHM],
            audience=AUTH_JWT_AUDIENCE,
            options=options,
        )
    except jwt.PyJWTError as exc:
        raise UnauthenticatedError("Invalid token") from exc

    email = payload.get("email")
    if not email:
        raise UnauthenticatedError("Token carries no email")
    return email


def lookup_caller(db: Session, email: str) -> Caller:
    user = UserRepository(db).get_by_email(email)
    if not user:
        return Caller(email=email)
    return Caller(email=email, role=user.role, is_fraud=user.is_fraud)


def issue_token(email: str, **claims) -> str:
    """Mint a token the verifier accepts. Used by the seed script and tests."""
    payload = {"email": email, "sub": email, **claims}
    if AUTH_JWT_AUDIENCE is not None:
        payload.setdefault("aud", AUTH_JWT_AUDIENCE)
    return jwt.encode(payload, require_jwt_secret(), algorithm=AUTH_JWT_ALGORITHM)
