from datetime import date
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user
from db.database import get_async_session
from db.users import User
from services import audit_log

router = APIRouter()


@router.get("", response_model=Dict)
async def list_audit_entries(
    item_id: Optional[int] = None,
    location_id: Optional[int] = None,
    actor_id: Optional[str] = None,
    entry_type: Optional[str] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    """Read-only view of the audit trail, newest first. There is no write endpoint."""
    page = await audit_log.query(
        db,
        item_id=item_id,
        location_id=location_id,
        actor_id=actor_id,
        entry_type=entry_type,
        date_from=from_date,
        date_to=to_date,
        limit=limit,
        offset=offset,
    )
    page["items"] = [e.to_schema for e in page["items"]]
    return page
