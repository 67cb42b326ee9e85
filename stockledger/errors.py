"""Rejections raised by the inventory workflows.

Every class carries an HTTP status and a machine-readable ``code`` so the
error handler can render a structured body without inspecting messages.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping


class StockLedgerError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def details(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        payload = {"success": False, "error": self.code, "message": self.message}
        payload.update(self.details())
        return payload


class ValidationError(StockLedgerError):
    code = "validation_error"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def details(self) -> dict[str, Any]:
        return {"field": self.field} if self.field else {}


class ConflictError(StockLedgerError):
    status_code = 409
    code = "conflict"


class DuplicateItemError(ConflictError):
    code = "duplicate_item"

    def __init__(self, field: str, value: str):
        super().__init__("Duplicate SKU or Item Name exists.")
        self.field = field
        self.value = value

    def details(self) -> dict[str, Any]:
        return {"field": self.field, "value": self.value}


class ConcurrentUpdateError(ConflictError):
    code = "concurrent_update"

    def __init__(self, message: str = "Inventory changed while saving; resubmit the request."):
        super().__init__(message)


class InsufficientStockError(StockLedgerError):
    code = "insufficient_stock"

    def __init__(self, shortfalls: Iterable[Mapping[str, Any]], message: str = "Insufficient stock"):
        super().__init__(message)
        self.shortfalls = [dict(entry) for entry in shortfalls]

    def details(self) -> dict[str, Any]:
        return {"details": self.shortfalls}


class NotFoundError(StockLedgerError):
    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, identifier):
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.identifier = identifier

    def details(self) -> dict[str, Any]:
        return {"id": self.identifier}


class AuthorizationError(StockLedgerError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "Your role does not allow this action."):
        super().__init__(message)
