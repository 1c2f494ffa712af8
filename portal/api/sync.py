"""Offline sync endpoint — replays queued client writes item by item."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db import get_db
from portal.schemas import SyncRequest, SyncResponse
from portal.services.sync_service import sync_payloads

router = APIRouter(prefix="/sync", tags=["Sync"])


@router.post("", response_model=SyncResponse)
async def sync(request: SyncRequest, db: AsyncSession = Depends(get_db)):
    """Per-item results let the client delete exactly what was stored or permanently rejected."""
    return await sync_payloads(db, request.payloads)
