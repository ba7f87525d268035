from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field

from tixgo.domain.moderation import UserRole, VerificationStatus
from tixgo.domain.state_machine import BookingStatus


class ErrorResponse(BaseModel):
    errorKind: str
    message: str


# -----------------------------
# Users
# -----------------------------
class UserProfileRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str
    name: str | None = None
    photo: str | None = None


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str | None = None
    photo: str | None = None
    role: UserRole
    is_fraud: bool


class RoleResponse(BaseModel):
    role: UserRole
    is_fraud: bool


# -----------------------------
# Tickets
# -----------------------------
class TicketCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    vendor_email: str
    vendor_name: str | None = None
    title: str = Field(min_length=1)
    origin: str = Field(min_length=1)
    destination: str = Field(min_length=1)
    transport_type: str | None = None
    departure: datetime
    price: Decimal = Field(ge=0)
    quantity: int = Field(ge=0)
    image: str | None = None
    perks: list[str] | None = None


class TicketUpdate(BaseModel):
    """Vendor-editable fields only; anything else is rejected."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1)
    origin: str | None = Field(default=None, min_length=1)
    destination: str | None = Field(default=None, min_length=1)
    transport_type: str | None = None
    departure: datetime | None = None
    price: Decimal | None = Field(default=None, ge=0)
    quantity: int | None = Field(default=None, ge=0)
    image: str | None = None
    perks: list[str] | None = None


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    vendor_email: str
    vendor_name: str | None = None
    title: str
    origin: str
    destination: str
    transport_type: str | None = None
    departure: datetime
    price: Decimal
    quantity: int
    verification_status: VerificationStatus
    advertised: bool
    hidden: bool
    image: str | None = None
    perks: list[str] | None = None


class AdvertiseRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    advertised: bool


# -----------------------------
# Bookings
# -----------------------------
class BookingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ticket_id: str
    customer_email: str
    quantity: int = Field(gt=0)


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    customer_email: str
    vendor_email: str
    title: str
    price: Decimal
    quantity: int
    status: BookingStatus
    created_at: datetime
    accepted_at: datetime | None = None
    rejected_at: datetime | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None
    checkout_session_id: str | None = None


# -----------------------------
# Payments
# -----------------------------
class CheckoutRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    booking_id: str


class CheckoutResponse(BaseModel):
    session_id: str
    url: str | None = None


class VerifyPaymentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    booking_id: str
    ticket_id: str
    customer_email: str
    amount: Decimal
    currency: str
    quantity: int
    transaction_id: str
    paid_at: datetime


class VerifyPaymentResponse(BaseModel):
    booking: BookingResponse
    payment: PaymentResponse
    newly_recorded: bool


class FraudResponse(BaseModel):
    success: bool
    hidden_tickets: int
