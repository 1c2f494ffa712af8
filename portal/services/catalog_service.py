"""Service catalog - lookup, filtering and admin upserts"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db.models import Service

logger = logging.getLogger(__name__)

_CONTENT_FIELDS = ("title", "description", "category", "steps", "forms", "faq", "contact", "language")


async def list_services(
    db: AsyncSession,
    category: Optional[str] = None,
    search: Optional[str] = None,
    include_inactive: bool = False,
) -> List[Service]:
    query = select(Service)
    if not include_inactive:
        query = query.where(Service.is_active == True)  # noqa: E712
    if category:
        query = query.where(Service.category == category)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.where(or_(Service.title.ilike(pattern), Service.description.ilike(pattern)))
    result = await db.execute(query.order_by(Service.category, Service.title))
    return list(result.scalars().all())


async def get_service(db: AsyncSession, service_id: str, include_inactive: bool = False) -> Optional[Service]:
    service = await db.get(Service, service_id)
    if service is None or (not service.is_active and not include_inactive):
        return None
    return service


async def list_categories(db: AsyncSession) -> List[str]:
    result = await db.execute(
        select(Service.category).where(Service.is_active == True).distinct().order_by(Service.category)  # noqa: E712
    )
    return [row for row in result.scalars().all() if row]


async def service_stats(db: AsyncSession) -> Dict[str, Any]:
    total = await db.scalar(select(func.count(Service.id))) or 0
    active = await db.scalar(
        select(func.count(Service.id)).where(Service.is_active == True)  # noqa: E712
    ) or 0
    rows = await db.execute(
        select(Service.category, func.count(Service.id))
        .where(Service.is_active == True)  # noqa: E712
        .group_by(Service.category)
    )
    return {"total": total, "active": active, "by_category": {cat: count for cat, count in rows.all()}}


async def upsert_service(db: AsyncSession, data: Dict[str, Any]) -> Service:
    """Insert or fully replace a service by its natural id. Re-activates soft-deleted rows."""
    service = await db.get(Service, data["id"])
    if service is None:
        service = Service(id=data["id"])
        db.add(service)
        logger.info("[CATALOG] Created service %s", data["id"])
    else:
        logger.info("[CATALOG] Replaced service %s", data["id"])

    service.title = data["title"]
    service.description = data["description"]
    service.category = data["category"]
    service.steps = list(data.get("steps") or [])
    service.forms = list(data.get("forms") or [])
    service.faq = list(data.get("faq") or [])
    service.contact = dict(data.get("contact") or {})
    service.language = data.get("language") or "both"
    service.is_active = True
    await db.commit()
    await db.refresh(service)
    return service


async def update_service(db: AsyncSession, service_id: str, changes: Dict[str, Any]) -> Optional[Service]:
    service = await db.get(Service, service_id)
    if service is None:
        return None
    for name, value in changes.items():
        if value is not None and (name in _CONTENT_FIELDS or name == "is_active"):
            setattr(service, name, value)
    await db.commit()
    await db.refresh(service)
    return service


async def deactivate_service(db: AsyncSession, service_id: str) -> bool:
    service = await db.get(Service, service_id)
    if service is None or not service.is_active:
        return False
    service.is_active = False
    await db.commit()
    logger.info("[CATALOG] Deactivated service %s", service_id)
    return True
