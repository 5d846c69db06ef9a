"""Domain errors shared by storefront services.

API layers translate these into HTTP responses; the ``detail`` text is what the
client shows in its notification toast.
"""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class StorefrontError(Exception):
    """Base class for expected, user-facing failures."""

    detail = "Request could not be completed"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.detail)
        if detail is not None:
            self.detail = detail


class ResourceNotFound(StorefrontError):
    detail = "Resource not found"


class UpstreamUnavailable(StorefrontError):
    detail = "A dependent service is unavailable"


class PromotionRejected(StorefrontError):
    """A promotion exists but cannot be used right now."""

    _MESSAGES = {
        "inactive": "Promotion is not active",
        "not_started": "Promotion has not started yet",
        "expired": "Promotion has expired",
        "exhausted": "Promotion usage limit has been reached",
    }

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(self._MESSAGES.get(reason, "Promotion cannot be applied"))


class PaymentDeclined(StorefrontError):
    detail = "Payment was declined"


class ConflictError(StorefrontError):
    """The request clashes with the current state of a resource."""

    detail = "Request conflicts with the current state"


_STATUS_CODES: dict[type[StorefrontError], int] = {
    ResourceNotFound: status.HTTP_404_NOT_FOUND,
    UpstreamUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    PromotionRejected: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PaymentDeclined: status.HTTP_402_PAYMENT_REQUIRED,
    ConflictError: status.HTTP_409_CONFLICT,
}


async def _handle_storefront_error(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, StorefrontError):
        raise exc
    status_code = next(
        (code for error_type, code in _STATUS_CODES.items() if isinstance(exc, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    body: dict[str, object] = {"detail": exc.detail}
    if isinstance(exc, PromotionRejected):
        body["reason"] = exc.reason
    return JSONResponse(status_code=status_code, content=body)


def install_error_handlers(app: FastAPI) -> None:
    """Translate domain errors raised anywhere in a request into JSON responses."""

    app.add_exception_handler(StorefrontError, _handle_storefront_error)
