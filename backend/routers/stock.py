from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import actor_id_of, current_active_user
from core.converters import as_float
from db.database import async_session_maker, get_async_session
from db.users import User
from schemas.stock import StockMutationOut, StockMutationRequest, StockTransferRequest
from services import stock_mutations
from services.stock_mutations import MutationOutcome, StockMutationService

router = APIRouter()

_service: Optional[StockMutationService] = None


def get_stock_service() -> StockMutationService:
    """Process-wide service: every request must share the same key locks."""
    global _service
    if _service is None:
        _service = StockMutationService(async_session_maker)
    return _service


def _outcome_out(outcome: MutationOutcome) -> StockMutationOut:
    return StockMutationOut(
        **outcome.mutation.to_schema,
        sync_status=outcome.sync_status,
        warning=outcome.warning,
    )


@router.get("/reasons", response_model=List[str])
async def list_reasons(user: User = Depends(current_active_user)):
    return list(stock_mutations.REASONS)


@router.post("/increase", response_model=StockMutationOut, status_code=status.HTTP_201_CREATED)
async def increase_stock(
    payload: StockMutationRequest,
    user: User = Depends(current_active_user),
    service: StockMutationService = Depends(get_stock_service),
):
    outcome = await service.increase(
        payload.item_id, payload.quantity, payload.reason, payload.notes,
        other_reason=payload.other_reason, actor_id=actor_id_of(user),
    )
    return _outcome_out(outcome)


@router.post("/decrease", response_model=StockMutationOut, status_code=status.HTTP_201_CREATED)
async def decrease_stock(
    payload: StockMutationRequest,
    user: User = Depends(current_active_user),
    service: StockMutationService = Depends(get_stock_service),
):
    outcome = await service.decrease(
        payload.item_id, payload.quantity, payload.reason, payload.notes,
        other_reason=payload.other_reason, actor_id=actor_id_of(user),
    )
    return _outcome_out(outcome)


@router.post("/transfer", response_model=StockMutationOut, status_code=status.HTTP_201_CREATED)
async def transfer_stock(
    payload: StockTransferRequest,
    user: User = Depends(current_active_user),
    service: StockMutationService = Depends(get_stock_service),
):
    """
    Move stock of one item to the equivalent record at another location.
    Both sides change in one transaction and produce a single mutation.
    """
    outcome = await service.transfer(
        payload.item_id, payload.from_location_id, payload.to_location_id,
        payload.quantity, payload.reason, payload.notes,
        other_reason=payload.other_reason, actor_id=actor_id_of(user),
    )
    return _outcome_out(outcome)


@router.get("/levels", response_model=Dict)
async def get_stock_levels(
    location_id: Optional[int] = None,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    levels = await stock_mutations.stock_levels(db, location_id=location_id)
    return {
        "out_of_stock": [as_float(it.to_schema) for it in levels.out_of_stock],
        "low_stock": [as_float(it.to_schema) for it in levels.low_stock],
    }


@router.get("/pending-sync", response_model=List[Dict])
async def list_pending_sync(
    limit: int = Query(100, ge=1, le=1000),
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    out = []
    for sync, mutation in await stock_mutations.list_pending(db, limit=limit):
        row = as_float(mutation.to_schema)
        row["sync"] = sync.to_schema
        out.append(row)
    return out


@router.post("/sync/retry", response_model=Dict)
async def retry_pending_sync(
    limit: int = Query(50, ge=1, le=500),
    user: User = Depends(current_active_user),
    service: StockMutationService = Depends(get_stock_service),
):
    if not user.is_superuser:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    return await service.retry_pending(limit=limit)
