import logging

from sqlalchemy.orm import Session

from tixgo.domain.exceptions import (
    ForbiddenError,
    NotApprovedError,
    NotFoundError,
    SlotLimitExceededError,
    ValidationError,
    VendorSuspendedError,
)
from tixgo.domain.moderation import (
    AD_SLOT_CAP,
    TICKET_VENDOR_MUTABLE_FIELDS,
    USER_PROFILE_FIELDS,
    TicketVerificationPolicy,
    UserRole,
    VerificationStatus,
    ensure_allowed_fields,
)
from tixgo.infrastructure.auth.identity import Caller
from tixgo.infrastructure.db.models import Ticket, User
from tixgo.infrastructure.repositories.ticket_repository import TicketRepository
from tixgo.infrastructure.repositories.user_repository import UserRepository


logger = logging.getLogger(__name__)

REQUIRED_TICKET_FIELDS = ("title", "origin", "destination", "departure", "price", "quantity")


class ModerationService:
    """
    Ticket approval, advertisement slots and vendor fraud handling,
    plus the vendor-side ticket mutations those rules constrain.
    """

    def __init__(self, db: Session):
        self.db = db
        self.ticket_repository = TicketRepository(db)
        self.user_repository = UserRepository(db)

    # -----------------------------
    # Admin: tickets
    # -----------------------------
    def approve_ticket(self, caller: Caller, ticket_id: str) -> Ticket:
        return self._set_verdict(caller, ticket_id, VerificationStatus.APPROVED)

    def reject_ticket(self, caller: Caller, ticket_id: str) -> Ticket:
        return self._set_verdict(caller, ticket_id, VerificationStatus.REJECTED)

    def set_advertised(self, caller: Caller, ticket_id: str, advertised: bool) -> Ticket:
        caller.require_admin()
        if not isinstance(advertised, bool):
            raise ValidationError("advertised must be boolean")

        ticket = self._get_ticket(ticket_id)

        if not advertised:
            self.ticket_repository.stop_advertising(ticket.id)
            return self._get_ticket(ticket_id)

        if ticket.verification_status != VerificationStatus.APPROVED:
            raise NotApprovedError("Only approved tickets can be advertised")

        # TODO: take a PostgreSQL advisory lock around try_advertise so two
        # concurrent requests for different tickets cannot both pass the cap.
        if not self.ticket_repository.try_advertise(ticket.id):
            raise SlotLimitExceededError(
                f"Cannot advertise more than {AD_SLOT_CAP} tickets"
            )

        logger.info(
            "Ticket %s is now advertised (%s/%s slots used).",
            ticket.id,
            self.ticket_repository.count_advertised(),
            AD_SLOT_CAP,
        )
        return self._get_ticket(ticket_id)

    # -----------------------------
    # Admin: users
    # -----------------------------
    def list_users(self, caller: Caller, role: UserRole | None = None) -> list[User]:
        caller.require_admin()
        return self.user_repository.list_users(role)

    def make_admin(self, caller: Caller, user_id: str) -> User:
        caller.require_admin()
        if not self.user_repository.set_role(user_id, UserRole.ADMIN):
            raise NotFoundError("User not found")
        return self._get_user(user_id)

    def make_vendor(self, caller: Caller, user_id: str) -> User:
        """Promote to vendor. Re-promotion is also how a fraud flag is cleared."""
        caller.require_admin()
        if not self.user_repository.set_role(user_id, UserRole.VENDOR, clear_fraud=True):
            raise NotFoundError("User not found")
        return self._get_user(user_id)

    def mark_vendor_fraud(self, caller: Caller, user_id: str) -> int:
        """Flag the vendor and hide every ticket they own, in one transaction."""
        caller.require_admin()

        user = self._get_user(user_id)
        if user.role != UserRole.VENDOR:
            raise ValidationError("Not a vendor")

        self.user_repository.mark_fraud(user.id)
        hidden = self.ticket_repository.hide_all_for_vendor(user.email)

        logger.info(
            "Vendor %s marked as fraud; %s tickets hidden.",
            user.email,
            hidden,
        )
        return hidden

    # -----------------------------
    # Users
    # -----------------------------
    def save_profile(self, caller_email: str, email: str, profile: dict) -> User:
        if email != caller_email:
            raise ForbiddenError("Profiles can only be saved for yourself")
        ensure_allowed_fields(profile, USER_PROFILE_FIELDS, "User")
        return self.user_repository.upsert_profile(email, **profile)

    # -----------------------------
    # Vendor: tickets
    # -----------------------------
    def create_ticket(self, caller: Caller, data: dict) -> Ticket:
        vendor_email = data.get("vendor_email")
        if vendor_email != caller.email:
            raise ForbiddenError("Tickets can only be created for yourself")
        if caller.is_fraud:
            raise VendorSuspendedError("Vendor is blocked")
        if not caller.is_vendor:
            raise ForbiddenError("Only vendors can create tickets")

        fields = {k: v for k, v in data.items() if k not in ("vendor_email", "vendor_name")}
        ensure_allowed_fields(fields, TICKET_VENDOR_MUTABLE_FIELDS, "Ticket")
        missing = sorted(f for f in REQUIRED_TICKET_FIELDS if fields.get(f) is None)
        if missing:
            raise ValidationError(f"Ticket fields required: {', '.join(missing)}")
        self._validate_ticket_values(fields)

        ticket = Ticket(
            vendor_email=vendor_email,
            vendor_name=data.get("vendor_name"),
            verification_status=VerificationStatus.PENDING,
            advertised=False,
            hidden=False,
            **fields,
        )
        self.ticket_repository.add(ticket)

        logger.info("Ticket %s created by vendor %s.", ticket.id, vendor_email)
        return ticket

    def update_ticket(self, caller: Caller, ticket_id: str, changes: dict) -> Ticket:
        ticket = self._get_vendor_mutable_ticket(caller, ticket_id, "updated")
        ensure_allowed_fields(changes, TICKET_VENDOR_MUTABLE_FIELDS, "Ticket")
        self._validate_ticket_values(changes)

        # Bookings keep their own price/title snapshot; editing here never reprices them.
        for field, value in changes.items():
            setattr(ticket, field, value)
        self.db.flush()
        return ticket

    def delete_ticket(self, caller: Caller, ticket_id: str) -> None:
        ticket = self._get_vendor_mutable_ticket(caller, ticket_id, "deleted")
        self.ticket_repository.delete(ticket)
        logger.info("Ticket %s deleted by vendor %s.", ticket_id, caller.email)

    # -----------------------------
    # Public reads
    # -----------------------------
    def get_visible_ticket(self, ticket_id: str) -> Ticket:
        ticket = self.ticket_repository.get_visible(ticket_id)
        if not ticket:
            raise NotFoundError("Ticket not found")
        return ticket

    def list_vendor_tickets(self, caller: Caller, email: str) -> list[Ticket]:
        if email != caller.email:
            raise ForbiddenError("Forbidden")
        return self.ticket_repository.list_visible(vendor_email=email, newest_first=True)

    # -----------------------------
    # Helpers
    # -----------------------------
    def _set_verdict(
        self,
        caller: Caller,
        ticket_id: str,
        verdict: VerificationStatus,
    ) -> Ticket:
        caller.require_admin()
        ticket = self._get_ticket(ticket_id)
        TicketVerificationPolicy.validate_verdict(ticket.verification_status, verdict)

        self.ticket_repository.set_verification_status(ticket.id, verdict)
        logger.info("Ticket %s verification set to %s.", ticket.id, verdict.value)
        return self._get_ticket(ticket_id)

    def _get_vendor_mutable_ticket(self, caller: Caller, ticket_id: str, action: str) -> Ticket:
        ticket = self._get_ticket(ticket_id)
        if ticket.vendor_email != caller.email:
            raise ForbiddenError("Forbidden")
        if ticket.verification_status == VerificationStatus.REJECTED:
            raise ForbiddenError(f"Rejected tickets cannot be {action}")
        return ticket

    def _get_ticket(self, ticket_id: str) -> Ticket:
        ticket = self.ticket_repository.get_by_id(ticket_id)
        if not ticket:
            raise NotFoundError("Ticket not found")
        self.db.refresh(ticket)
        return ticket

    def _get_user(self, user_id: str) -> User:
        user = self.user_repository.get_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        self.db.refresh(user)
        return user

    @staticmethod
    def _validate_ticket_values(fields: dict) -> None:
        cleared = sorted(f for f in REQUIRED_TICKET_FIELDS if f in fields and fields[f] is None)
        if cleared:
            raise ValidationError(f"Ticket fields cannot be empty: {', '.join(cleared)}")
        if "price" in fields and (fields["price"] is None or fields["price"] < 0):
            raise ValidationError("price must be zero or more")
        if "quantity" in fields and (fields["quantity"] is None or fields["quantity"] < 0):
            raise ValidationError("quantity must be zero or more")
