from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user
from core.converters import as_float
from db.database import get_async_session
from db.inventory.item import PrimaryItem
from db.location import Location
from db.users import User
from routers.stock import get_stock_service
from services.stock_mutations import StockMutationService

router = APIRouter()


@router.get("/locations", response_model=List[Dict])
async def list_locations(
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    res = await db.execute(select(Location).order_by(Location.name))
    return [loc.to_schema for loc in res.scalars().all()]


@router.get("/items", response_model=List[Dict])
async def list_items(
    location_id: Optional[int] = None,
    q: Optional[str] = None,
    include_inactive: bool = False,
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    stmt = select(PrimaryItem)
    if location_id is not None:
        stmt = stmt.where(PrimaryItem.location_id == location_id)
    if not include_inactive:
        stmt = stmt.where(PrimaryItem.is_active == True)  # noqa: E712
    if q:
        like = f"%{q.strip()}%"
        stmt = stmt.where(PrimaryItem.name.ilike(like) | PrimaryItem.sku.ilike(like))
    stmt = stmt.order_by(PrimaryItem.location_id, PrimaryItem.name, PrimaryItem.id).limit(limit).offset(offset)
    res = await db.execute(stmt)
    return [as_float(it.to_schema) for it in res.scalars().all()]


@router.post("/locations/{location_id}/refresh", response_model=Dict)
async def refresh_location(
    location_id: int,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
    service: StockMutationService = Depends(get_stock_service),
):
    """Pull current POS stock for one location into the local mirror."""
    if await db.get(Location, location_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Location not found")
    return await service.refresh_location(location_id)
