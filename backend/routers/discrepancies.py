from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user
from core.converters import report_to_dict
from db.database import get_async_session
from db.users import User
from services.discrepancy import load_report

router = APIRouter()


@router.get("", response_model=Dict)
async def get_discrepancies(
    location_id: Optional[int] = None,
    vendor: Optional[str] = None,
    status: Optional[str] = Query(None, pattern="^(synced|discrepancy)$"),
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    report = await load_report(db, location_id=location_id, vendor=vendor, status=status)
    return report_to_dict(report)
