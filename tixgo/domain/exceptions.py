

class TixgoError(Exception):
    """
    Base exception for all domain-level errors
    inside the Tixgo marketplace.
    """

    error_kind = "Error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(TixgoError):
    error_kind = "NotFound"


class ForbiddenError(TixgoError):
    """Raised when the caller does not own the resource or lacks the role."""

    error_kind = "Forbidden"


class UnauthenticatedError(TixgoError):
    error_kind = "Unauthenticated"


class InvalidStateTransitionError(TixgoError):
    """
    Raised when an illegal booking or ticket state transition is attempted.
    """

    error_kind = "InvalidTransition"

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class InsufficientStockError(TixgoError):
    """Raised when a ticket does not have enough quantity left."""

    error_kind = "InsufficientStock"


class SlotLimitExceededError(TixgoError):
    error_kind = "SlotLimitExceeded"


class AlreadyPaidError(TixgoError):
    error_kind = "AlreadyPaid"


class NotAcceptedError(TixgoError):
    error_kind = "NotAccepted"


class NotApprovedError(TixgoError):
    error_kind = "NotApproved"


class DeparturePassedError(TixgoError):
    error_kind = "DeparturePassed"


class VendorSuspendedError(TixgoError):
    """Raised when a vendor flagged as fraudulent tries to publish tickets."""

    error_kind = "VendorSuspended"


class PaymentNotCompletedError(TixgoError):
    error_kind = "PaymentNotCompleted"


class ValidationError(TixgoError):
    error_kind = "ValidationError"


class PaymentProviderError(TixgoError):
    """Raised when the checkout provider rejects or fails a request."""

    error_kind = "PaymentProviderError"


class UnavailableError(TixgoError):
    """Raised when the store is unreachable; callers may retry."""

    error_kind = "Unavailable"
