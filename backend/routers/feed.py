from typing import Dict, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import actor_id_of, current_active_user
from core.converters import as_float
from db.database import get_async_session
from db.users import User
from services import feed_import

router = APIRouter()

MAX_FEED_BYTES = 20 * 1024 * 1024


@router.post("/import", response_model=Dict)
async def import_vendor_feed(
    file: UploadFile = File(...),
    header_lines: Optional[int] = Query(None, ge=0, le=100),
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Replace the vendor (secondary) data set with an uploaded CSV report and
    re-run SKU matching. Malformed rows are counted, not fatal.
    """
    raw = await file.read()
    if not raw.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty")
    if len(raw) > MAX_FEED_BYTES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Feed file must be less than 20MB")

    return await feed_import.import_feed(
        db,
        raw,
        filename=file.filename,
        actor_id=actor_id_of(user),
        header_lines=header_lines,
    )


@router.get("/imports/latest", response_model=Dict)
async def get_latest_import(
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    summary = await feed_import.latest_import(db)
    if summary is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No feed has been imported yet")
    return summary


@router.get("/rows", response_model=Dict)
async def list_rows(
    location_id: Optional[int] = None,
    vendor: Optional[str] = None,
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    page = await feed_import.list_secondary_rows(db, location_id=location_id, vendor=vendor, limit=limit, offset=offset)
    page["items"] = [as_float(r.to_schema) for r in page["items"]]
    return page
