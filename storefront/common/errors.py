"""Error taxonomy shared by the services and the HTTP layer.

Services raise these; the Quart error handlers registered in ``app.py``
render them as ``{"ok": false, "error": <kind>, "message": ..., "detail": ...}``.
"""
from typing import Any, Dict, Optional


class StoreError(Exception):
    kind = "internal"
    status_code = 500

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"ok": False, "error": self.kind, "message": self.message}
        if self.detail:
            body["detail"] = self.detail
        return body


class InvalidArgument(StoreError):
    kind = "invalid_argument"
    status_code = 400


class Unauthorized(StoreError):
    kind = "unauthorized"
    status_code = 401


class Forbidden(StoreError):
    kind = "forbidden"
    status_code = 403


class NotFound(StoreError):
    kind = "not_found"
    status_code = 404


class InsufficientStock(StoreError):
    kind = "insufficient_stock"
    status_code = 409

    def __init__(self, available: int, requested: int, product_id: Optional[int] = None,
                 size: Optional[str] = None):
        detail: Dict[str, Any] = {"available": available, "requested": requested}
        if product_id is not None:
            detail["product_id"] = product_id
        if size is not None:
            detail["size"] = size
        super().__init__(f"Insufficient stock. Available: {available}, Requested: {requested}", detail)
        self.available = available
        self.requested = requested


class InvalidState(StoreError):
    kind = "invalid_state"
    status_code = 409


class Conflict(StoreError):
    kind = "conflict"
    status_code = 409


class Internal(StoreError):
    kind = "internal"
    status_code = 500


class StockBatchFailed(InvalidArgument):
    """Every item of a stock batch failed; the batch was rolled back."""

    def __init__(self, errors):
        super().__init__("Failed to reduce stock for all items", {"errors": list(errors)})
        self.errors = list(errors)


def validation_detail(exc) -> Dict[str, Any]:
    """Flatten a pydantic ValidationError into JSON-safe detail."""
    return {
        "fields": [
            {"loc": ".".join(str(p) for p in err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
    }
