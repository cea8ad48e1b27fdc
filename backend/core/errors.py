"""Typed failures of the reconciliation and stock mutation core.

Services raise these; the API layer renders them as ``{"code", "detail"}``
with the mapped status code. Nothing here is meant to crash the process.
"""

from typing import Any, Optional

from fastapi import status


class InventoryError(Exception):
    code = "inventory_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str, **context: Any):
        super().__init__(detail)
        self.detail = detail
        self.context = context

    def to_dict(self) -> dict:
        out = {"code": self.code, "detail": self.detail}
        if self.context:
            out["context"] = self.context
        return out


class ParseError(InventoryError):
    """Malformed feed row. Recovered: counted, the batch continues."""

    code = "parse_error"
    status_code = 422

    def __init__(self, detail: str, line: Optional[int] = None, raw: Optional[str] = None):
        super().__init__(detail, line=line)
        self.line = line
        self.raw = raw


class AlreadyMatched(InventoryError):
    code = "already_matched"
    status_code = status.HTTP_409_CONFLICT


class SecondaryRowNotFound(InventoryError):
    code = "secondary_row_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ItemNotFound(InventoryError):
    code = "item_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class LocationMismatch(InventoryError):
    code = "location_mismatch"
    status_code = status.HTTP_409_CONFLICT


class MissingReason(InventoryError):
    code = "missing_reason"
    status_code = 422


class InvalidQuantity(InventoryError):
    code = "invalid_quantity"
    status_code = 422


class InvalidTransfer(InventoryError):
    code = "invalid_transfer"
    status_code = status.HTTP_409_CONFLICT


class InsufficientStock(InventoryError):
    code = "insufficient_stock"
    status_code = status.HTTP_409_CONFLICT


class DownstreamSyncFailure(InventoryError):
    """Local write succeeded, the primary system signal did not."""

    code = "downstream_sync_failure"
    status_code = status.HTTP_502_BAD_GATEWAY


class ImmutableRecordError(InventoryError):
    code = "immutable_record"
    status_code = status.HTTP_409_CONFLICT


class NoActiveMatch(InventoryError):
    code = "no_active_match"
    status_code = status.HTTP_404_NOT_FOUND
