from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, field_validator


class StockMutationRequest(BaseModel):
    item_id: int
    # Positivity and reason rules are enforced by the mutation service so the
    # API and direct callers reject with the same error codes.
    quantity: Decimal
    reason: Optional[str] = None
    other_reason: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("reason", "other_reason", "notes")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class StockTransferRequest(StockMutationRequest):
    from_location_id: Optional[int] = None
    to_location_id: int


class StockMutationOut(BaseModel):
    id: int
    type: str
    item_id: int
    to_item_id: Optional[int] = None
    from_location_id: int
    to_location_id: Optional[int] = None
    quantity: float
    quantity_before: float
    quantity_after: float
    to_quantity_before: Optional[float] = None
    to_quantity_after: Optional[float] = None
    reason: str
    other_reason: Optional[str] = None
    notes: Optional[str] = None
    actor_id: Optional[str] = None
    created_at: datetime
    sync_status: str
    warning: Optional[str] = None
