"""Citizen feedback - storage and dashboard statistics"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db.models import Feedback, FeedbackStatus

logger = logging.getLogger(__name__)


def build_feedback(data: Dict[str, Any], source: str = "online") -> Feedback:
    """Build (but do not persist) a feedback row. Raises ValueError on invalid content."""
    try:
        rating = int(data.get("rating"))
    except (TypeError, ValueError):
        raise ValueError("rating must be an integer between 1 and 5")
    if rating < 1 or rating > 5:
        raise ValueError("rating must be an integer between 1 and 5")

    return Feedback(
        rating=rating,
        comment=_optional_text(data.get("comment")),
        suggestion=_optional_text(data.get("suggestion")),
        service_id=_optional_text(data.get("service_id") or data.get("serviceId")),
        status=FeedbackStatus.NEW.value,
        source=source,
    )


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


async def create_feedback(db: AsyncSession, data: Dict[str, Any], source: str = "online") -> Feedback:
    feedback = build_feedback(data, source=source)
    db.add(feedback)
    await db.commit()
    await db.refresh(feedback)
    logger.info("[FEEDBACK] Stored feedback %s (rating=%s, source=%s)", feedback.id, feedback.rating, source)
    return feedback


async def list_feedback(db: AsyncSession, status: Optional[str] = None, limit: int = 100) -> List[Feedback]:
    query = select(Feedback)
    if status:
        query = query.where(Feedback.status == status)
    result = await db.execute(query.order_by(Feedback.created_at.desc(), Feedback.id.desc()).limit(limit))
    return list(result.scalars().all())


async def feedback_stats(db: AsyncSession) -> Dict[str, Any]:
    total = await db.scalar(select(func.count(Feedback.id))) or 0
    average = await db.scalar(select(func.avg(Feedback.rating)))

    distribution = {rating: 0 for rating in range(1, 6)}
    rows = await db.execute(select(Feedback.rating, func.count(Feedback.id)).group_by(Feedback.rating))
    for rating, count in rows.all():
        distribution[rating] = count

    by_status = {s.value: 0 for s in FeedbackStatus}
    rows = await db.execute(select(Feedback.status, func.count(Feedback.id)).group_by(Feedback.status))
    for status, count in rows.all():
        by_status[status] = count

    return {
        "total": total,
        "average_rating": round(float(average), 2) if average is not None else 0.0,
        "distribution": distribution,
        "by_status": by_status,
    }


async def update_feedback_status(db: AsyncSession, feedback_id: int, status: FeedbackStatus) -> Optional[Feedback]:
    feedback = await db.get(Feedback, feedback_id)
    if feedback is None:
        return None
    feedback.status = status.value
    await db.commit()
    await db.refresh(feedback)
    return feedback
