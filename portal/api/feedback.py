"""
Feedback API — citizen submissions and the admin dashboard views.

Endpoints:
  POST /api/feedback                — Submit feedback (public)
  GET  /api/feedback                — List feedback, newest first (admin)
  GET  /api/feedback/stats          — Rating distribution and status counts (admin)
  PUT  /api/feedback/{id}/status    — Move feedback through new/reviewed/resolved (admin)
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db import get_db, User, FeedbackStatus
from portal.api.deps import require_admin
from portal.schemas import FeedbackCreate, FeedbackResponse, FeedbackStats, FeedbackStatusUpdate
from portal.services import feedback_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/feedback", tags=["Feedback"])


@router.post("", response_model=FeedbackResponse, status_code=status.HTTP_201_CREATED)
async def submit_feedback(data: FeedbackCreate, db: AsyncSession = Depends(get_db)):
    try:
        return await feedback_service.create_feedback(db, data.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("", response_model=List[FeedbackResponse])
async def list_feedback(
    status_filter: Optional[FeedbackStatus] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    return await feedback_service.list_feedback(
        db, status=status_filter.value if status_filter else None, limit=limit,
    )


@router.get("/stats", response_model=FeedbackStats)
async def get_feedback_stats(db: AsyncSession = Depends(get_db), _admin: User = Depends(require_admin)):
    return await feedback_service.feedback_stats(db)


@router.put("/{feedback_id}/status", response_model=FeedbackResponse)
async def update_status(
    feedback_id: int,
    data: FeedbackStatusUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    feedback = await feedback_service.update_feedback_status(db, feedback_id, data.status)
    if not feedback:
        raise HTTPException(status_code=404, detail="Feedback not found")
    return feedback
