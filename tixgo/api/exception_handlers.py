import logging
from typing import Any, Callable, Coroutine

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, TimeoutError as SQLAlchemyTimeoutError
from starlette.responses import Response

from tixgo.api.schemas.schemas import ErrorResponse
from tixgo.domain import exceptions as domain


logger = logging.getLogger(__name__)

ExceptionHandler = Callable[[Request, Exception], Coroutine[Any, Any, Response]]

# Presentation mapping; the domain layer never sees HTTP codes.
STATUS_BY_ERROR: dict[type[domain.TixgoError], int] = {
    domain.ValidationError: status.HTTP_400_BAD_REQUEST,
    domain.DeparturePassedError: status.HTTP_400_BAD_REQUEST,
    domain.UnauthenticatedError: status.HTTP_401_UNAUTHORIZED,
    domain.ForbiddenError: status.HTTP_403_FORBIDDEN,
    domain.VendorSuspendedError: status.HTTP_403_FORBIDDEN,
    domain.NotFoundError: status.HTTP_404_NOT_FOUND,
    domain.InvalidStateTransitionError: status.HTTP_409_CONFLICT,
    domain.InsufficientStockError: status.HTTP_409_CONFLICT,
    domain.SlotLimitExceededError: status.HTTP_409_CONFLICT,
    domain.AlreadyPaidError: status.HTTP_409_CONFLICT,
    domain.NotAcceptedError: status.HTTP_409_CONFLICT,
    domain.NotApprovedError: status.HTTP_409_CONFLICT,
    domain.PaymentNotCompletedError: status.HTTP_409_CONFLICT,
    domain.PaymentProviderError: status.HTTP_502_BAD_GATEWAY,
    domain.UnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _error_body(kind: str, message: str) -> dict:
    return ErrorResponse(errorKind=kind, message=message).model_dump()


async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error = exc if isinstance(exc, domain.TixgoError) else domain.TixgoError(str(exc))
    status_code = STATUS_BY_ERROR.get(type(error), status.HTTP_400_BAD_REQUEST)
    return JSONResponse(
        status_code=status_code,
        content=_error_body(error.error_kind, error.message),
    )


async def validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    errors = exc.errors() if isinstance(exc, RequestValidationError) else []
    message = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
        for err in errors
    ) or "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body(domain.ValidationError.error_kind, message),
    )


async def store_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("Store unavailable while handling %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=_error_body(
            domain.UnavailableError.error_kind,
            "Database is currently unavailable. Please retry.",
        ),
    )


EXCEPTION_HANDLERS: dict[type[Exception], ExceptionHandler] = {
    domain.TixgoError: domain_error_handler,
    RequestValidationError: validation_error_handler,
    OperationalError: store_unavailable_handler,
    SQLAlchemyTimeoutError: store_unavailable_handler,
}


def register_exception_handlers(app: FastAPI) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
