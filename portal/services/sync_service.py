"""
Sync service - replays offline writes queued by clients.

Each item of a batch is validated and committed on its own, so one bad item
never takes the rest of the batch down with it. Every item gets a status:

  synced    stored; the client may delete it from its queue
  rejected  unsupported type or invalid content; retrying cannot help,
            the client deletes it too
  error     storage failure; the client keeps it and retries later
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.services.feedback_service import build_feedback

logger = logging.getLogger(__name__)

STATUS_SYNCED = "synced"
STATUS_REJECTED = "rejected"
STATUS_ERROR = "error"

# Payload type -> row builder. Builders raise ValueError on invalid content.
HANDLERS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    "feedback": lambda payload: build_feedback(payload, source="sync"),
}


@dataclass
class SyncOutcome:
    index: int
    id: Optional[int]
    status: str
    detail: Optional[str] = None


async def _apply(db: AsyncSession, index: int, item) -> SyncOutcome:
    item_id = getattr(item, "id", None)
    handler = HANDLERS.get(item.type or "")
    if handler is None:
        return SyncOutcome(index, item_id, STATUS_REJECTED, f"Unsupported payload type: {item.type!r}")
    if not isinstance(item.payload, dict):
        return SyncOutcome(index, item_id, STATUS_REJECTED, "payload must be an object")

    try:
        row = handler(item.payload)
    except ValueError as e:
        return SyncOutcome(index, item_id, STATUS_REJECTED, str(e))

    try:
        db.add(row)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("[SYNC] Failed to store item %d (%s): %s", index, item.type, e)
        return SyncOutcome(index, item_id, STATUS_ERROR, "storage failure")
    return SyncOutcome(index, item_id, STATUS_SYNCED)


async def sync_payloads(db: AsyncSession, items: Sequence) -> Dict[str, Any]:
    outcomes: List[SyncOutcome] = []
    for index, item in enumerate(items):
        outcomes.append(await _apply(db, index, item))

    synced = sum(1 for o in outcomes if o.status == STATUS_SYNCED)
    errors = len(outcomes) - synced
    message = f"Successfully synced {synced} items"
    if errors:
        message += f", {errors} errors"

    if errors:
        logger.warning("[SYNC] Batch of %d: %d synced, %d not synced", len(outcomes), synced, errors)
    else:
        logger.info("[SYNC] Batch of %d synced", len(outcomes))

    return {
        "synced": synced,
        "errors": errors,
        "total": len(outcomes),
        "results": [asdict(o) for o in outcomes],
        "message": message,
    }
