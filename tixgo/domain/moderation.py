# tixgo/domain/moderation.py

from enum import Enum
from typing import Dict, FrozenSet, Iterable, Set

from tixgo.domain.exceptions import (
    InvalidStateTransitionError,
    ValidationError,
)


# Maximum number of tickets that may be advertised and approved at once.
AD_SLOT_CAP = 6


class VerificationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UserRole(str, Enum):
    USER = "user"
    VENDOR = "vendor"
    ADMIN = "admin"


# Fields a vendor may change on a ticket they own. Everything else
# (verification status, advertisement, visibility, ownership) belongs to admins.
TICKET_VENDOR_MUTABLE_FIELDS: FrozenSet[str] = frozenset(
    {
        "title",
        "origin",
        "destination",
        "transport_type",
        "departure",
        "price",
        "quantity",
        "image",
        "perks",
    }
)

# Fields a user may set on their own profile.
USER_PROFILE_FIELDS: FrozenSet[str] = frozenset({"name", "photo"})


class TicketVerificationPolicy:
    """Admin verdicts on tickets. Rejection is final."""

    _ALLOWED_VERDICTS: Dict[VerificationStatus, Set[VerificationStatus]] = {
        VerificationStatus.PENDING: {
            VerificationStatus.APPROVED,
            VerificationStatus.REJECTED,
        },
        VerificationStatus.APPROVED: {
            VerificationStatus.APPROVED,
            VerificationStatus.REJECTED,
        },
        VerificationStatus.REJECTED: {
            VerificationStatus.REJECTED,
        },
    }

    @classmethod
    def validate_verdict(
        cls,
        current: VerificationStatus,
        verdict: VerificationStatus,
    ) -> None:
        if verdict not in cls._ALLOWED_VERDICTS[current]:
            raise InvalidStateTransitionError(
                from_state=current.value,
                to_state=verdict.value,
            )


def ensure_allowed_fields(
    fields: Iterable[str],
    allowed: FrozenSet[str],
    entity: str,
) -> None:
    """Reject any field outside the allow-list instead of silently dropping it."""
    rejected = sorted(set(fields) - allowed)
    if rejected:
        raise ValidationError(
            f"{entity} fields not allowed: {', '.join(rejected)}"
        )
