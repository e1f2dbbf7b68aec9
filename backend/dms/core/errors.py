"""Domain exceptions shared by the service layer and rendered by the API."""

from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse


class DmsError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "dms_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(DmsError):
    """Missing or invalid reference, wrong role or inconsistent amounts."""

    code = "validation_error"


class NotFoundError(DmsError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class NoStockAvailable(DmsError):
    status_code = status.HTTP_409_CONFLICT
    code = "no_stock_available"

    def __init__(self, product_code: str) -> None:
        super().__init__(f"No stock available for product {product_code}.")
        self.product_code = product_code


class InsufficientStock(DmsError):
    status_code = status.HTTP_409_CONFLICT
    code = "insufficient_stock"

    def __init__(self, product_code: str, batch_no: str, available: int, requested: int) -> None:
        super().__init__(
            f"Insufficient stock for product {product_code} in batch {batch_no}: "
            f"available {available}, requested {requested}."
        )
        self.product_code = product_code
        self.batch_no = batch_no
        self.available = available
        self.requested = requested


class PriceBelowMinimum(DmsError):
    code = "price_below_minimum"


class LedgerPostFailure(DmsError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "ledger_post_failure"


class ManifestSyncFailure(DmsError):
    """Delivery log bookkeeping failed; never surfaced by invoice calls."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "manifest_sync_failure"


class LockConflict(DmsError):
    status_code = status.HTTP_409_CONFLICT
    code = "lock_conflict"


class SequenceUnavailable(DmsError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "sequence_unavailable"


async def dms_error_handler(request: Request, exc: DmsError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
    )
