"""
Pickup engine errors.

Every error is recoverable and caller-visible: raised synchronously from the
operation and rendered by the API as ``{"detail": {"code", "message", ...}}``.
"""

from typing import Any


class PickupError(Exception):
    """Base class for lifecycle, ledger and allowance failures."""

    code = "pickup_error"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        detail = {"code": self.code, "message": self.message}
        for key, value in self.context.items():
            if value is None or isinstance(value, (str, int, float, bool)):
                detail[key] = value
            elif hasattr(value, "isoformat"):
                detail[key] = value.isoformat()
            else:
                detail[key] = str(value)
        return detail


class InvalidQuantity(PickupError):
    code = "invalid_quantity"
    status_code = 422


class InsufficientStock(PickupError):
    code = "insufficient_stock"
    status_code = 409


class NotFound(PickupError):
    code = "not_found"
    status_code = 404


class InvalidTransition(PickupError):
    """Operation attempted on a terminal record, or not allowed from its status."""

    code = "invalid_transition"
    status_code = 409


class Forbidden(PickupError):
    code = "forbidden"
    status_code = 403


class AllowanceExceeded(PickupError):
    code = "allowance_exceeded"
    status_code = 409


class AllowanceRequestConflict(PickupError):
    code = "allowance_request_conflict"
    status_code = 409


class InvalidTransferTarget(PickupError):
    code = "invalid_transfer_target"
    status_code = 400


class InventoryConflict(PickupError):
    """Restoring a reservation would push available above the catalog ceiling."""

    code = "inventory_conflict"
    status_code = 409


class StockLedgerUnavailable(PickupError):
    """The store could not guarantee an atomic decrement; the request is rejected."""

    code = "stock_ledger_unavailable"
    status_code = 503


class LocationMismatch(PickupError):
    """Stock must stay within the location it was picked up in."""

    code = "location_mismatch"
    status_code = 403
