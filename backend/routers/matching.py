from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import actor_id_of, current_active_user
from core.converters import match_state_to_dict
from db.database import get_async_session
from db.users import User
from schemas.matching import ManualMatchRequest
from services import identity_matcher

router = APIRouter()


@router.get("/unmatched", response_model=List[Dict])
async def list_unmatched_rows(
    location_id: Optional[int] = None,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    """Vendor rows without an active match, each with its ranked suggestions."""
    states = await identity_matcher.list_unmatched(db, location_id=location_id)
    return [match_state_to_dict(s) for s in states]


@router.get("/rows/{row_id}", response_model=Dict)
async def get_row_state(
    row_id: int,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    state = await identity_matcher.state_for_row(db, row_id)
    return match_state_to_dict(state)


@router.post("/manual", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def confirm_manual_match(
    payload: ManualMatchRequest,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    record = await identity_matcher.confirm_match(
        db, payload.secondary_row_id, payload.primary_item_id, actor_id_of(user)
    )
    return record.to_schema


@router.delete("/rows/{row_id}", response_model=Dict)
async def remove_match(
    row_id: int,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    record = await identity_matcher.unmatch(db, row_id, actor_id_of(user))
    return record.to_schema


@router.get("/records", response_model=List[Dict])
async def list_records(
    include_superseded: bool = False,
    secondary_row_key: Optional[str] = None,
    location_id: Optional[int] = None,
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    records = await identity_matcher.list_match_records(
        db,
        include_superseded=include_superseded,
        secondary_row_key=secondary_row_key,
        location_id=location_id,
        limit=limit,
        offset=offset,
    )
    return [r.to_schema for r in records]
