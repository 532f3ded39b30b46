# Overview: Error taxonomy shared by the inventory workflows and their routes.

"""
Every workflow error aborts the enclosing unit of work: the session is rolled
back before the error reaches the caller, so documents, inventory records and
the movement ledger are exactly as they were before the command.

Routes translate these into JSON bodies using ``http_status``.
"""

from __future__ import annotations

from flask import jsonify


class InventoryError(ValueError):
    """Base class for errors surfaced to callers of the inventory core."""

    http_status = 400

    def to_dict(self) -> dict:
        return {"error": str(self), "error_type": type(self).__name__}


class ValidationError(InventoryError):
    """Malformed or missing input; rejected before any mutation."""


class NotFoundError(InventoryError):
    """Referenced document, store, product or record does not exist."""

    http_status = 404


class IllegalStateTransitionError(InventoryError):
    """Command attempted against a document whose status forbids it."""

    http_status = 409

    def __init__(self, message: str, *, current_status: str | None = None):
        super().__init__(message)
        self.current_status = current_status

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["current_status"] = self.current_status
        return body


class NegativeStockError(InventoryError):
    """A computed resulting quantity would be negative."""

    http_status = 409

    def __init__(
        self,
        message: str,
        *,
        store_id: int | None = None,
        product_id: int | None = None,
        resulting_quantity: int | None = None,
    ):
        super().__init__(message)
        self.store_id = store_id
        self.product_id = product_id
        self.resulting_quantity = resulting_quantity

    def to_dict(self) -> dict:
        body = super().to_dict()
        body.update(
            store_id=self.store_id,
            product_id=self.product_id,
            resulting_quantity=self.resulting_quantity,
        )
        return body


class InsufficientStockError(InventoryError):
    """Transfer quantity exceeds what the source store holds."""

    http_status = 409

    def __init__(self, message: str, *, product_id: int | None = None, available: int | None = None):
        super().__init__(message)
        self.product_id = product_id
        self.available = available

    def to_dict(self) -> dict:
        body = super().to_dict()
        body.update(product_id=self.product_id, available=self.available)
        return body


class ConcurrentModificationError(InventoryError):
    """A concurrent writer changed the rows first; retry with fresh data."""

    http_status = 409


class PersistenceError(InventoryError):
    """Underlying store failure; the transaction was rolled back."""

    http_status = 500


def error_response(exc: InventoryError):
    """(body, status) pair for a route handler."""
    return jsonify(exc.to_dict()), exc.http_status
