"""Typed error taxonomy for the booking engine.

Every rejection a service can produce is one of these. Callers tell routine
races (``Conflict`` and its subclasses) apart from malformed input
(``ValidationError``) by ``kind``, which is also what the HTTP layer renders:

    {"kind": "BidNoLongerAvailable", "message": "..."}
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse


class EngineError(Exception):
    """Base for every rejection raised by a service operation."""

    kind = "EngineError"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InvalidState(EngineError):
    kind = "InvalidState"
    status_code = status.HTTP_409_CONFLICT


class NotFound(EngineError):
    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(EngineError):
    kind = "Conflict"
    status_code = status.HTTP_409_CONFLICT


class StaleVersion(Conflict):
    """The booking row changed between read and compare-and-swap commit."""


class DuplicateBid(Conflict):
    kind = "DuplicateBid"


class BidNoLongerAvailable(Conflict):
    kind = "BidNoLongerAvailable"


class PaymentDeclined(Conflict):
    """The payment gateway refused the charge; the booking stays unpaid."""

    kind = "PaymentDeclined"


class ValidationError(EngineError):
    kind = "ValidationError"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class MissingEvidence(ValidationError):
    kind = "MissingEvidence"


class NotAssignedContractor(EngineError):
    kind = "NotAssignedContractor"
    status_code = status.HTTP_403_FORBIDDEN


class NotBookingCustomer(EngineError):
    kind = "NotBookingCustomer"
    status_code = status.HTTP_403_FORBIDDEN


class PaymentBlocked(EngineError):
    kind = "PaymentBlocked"
    status_code = status.HTTP_409_CONFLICT


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    """Render an EngineError as ``{kind, message}`` with its HTTP status."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
