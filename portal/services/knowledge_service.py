"""
Knowledge base derived from the service catalog.

Each active service contributes:
  - one "service" item (its description),
  - one "faq" item per FAQ entry,
  - one "steps" item summarising its procedure, when it has steps.

Search ranks services by normalized token overlap with the query, using
the same normalization as the offline fallback resolver so that online and
offline answers agree on what "matches" means.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db.models import Service
from portal.services.knowledge_fallback import tokenize

logger = logging.getLogger(__name__)


def build_knowledge_items(service: Service) -> List[Dict[str, Any]]:
    title = (service.title or "").lower()
    items = [{
        "id": service.id,
        "type": "service",
        "question": f"Comment obtenir {title}?",
        "answer": service.description or "",
        "category": service.category,
        "service_id": service.id,
        "keywords": [],
    }]

    for faq in service.faq or []:
        items.append({
            "id": f"{service.id}_faq_{faq.get('id')}",
            "type": "faq",
            "question": faq.get("question", ""),
            "answer": faq.get("answer", ""),
            "category": service.category,
            "service_id": service.id,
            "keywords": list(faq.get("keywords") or []),
        })

    if service.steps:
        summary = " ".join(
            f"{step.get('order')}. {step.get('title')}: {step.get('description')}"
            for step in service.steps
        )
        items.append({
            "id": f"{service.id}_steps",
            "type": "steps",
            "question": f"Quelles sont les étapes pour {title}?",
            "answer": summary,
            "category": service.category,
            "service_id": service.id,
            "keywords": [],
        })
    return items


def _matches(item: Dict[str, Any], needle: str) -> bool:
    if needle in item["question"].lower() or needle in item["answer"].lower():
        return True
    return any(needle in str(k).lower() for k in item["keywords"])


async def get_knowledge_base(
    db: AsyncSession,
    search: Optional[str] = None,
    category: Optional[str] = None,
    language: Optional[str] = "fr",
) -> Dict[str, Any]:
    query = select(Service).where(Service.is_active == True)  # noqa: E712
    if category:
        query = query.where(Service.category == category)
    if language:
        query = query.where(or_(Service.language == language, Service.language == "both"))
    result = await db.execute(query.order_by(Service.id))

    items: List[Dict[str, Any]] = []
    for service in result.scalars().all():
        items.extend(build_knowledge_items(service))

    if search and search.strip():
        needle = search.strip().lower()
        items = [item for item in items if _matches(item, needle)]

    return {
        "knowledge": items,
        "total": len(items),
        "categories": list(dict.fromkeys(item["category"] for item in items)),
        "types": list(dict.fromkeys(item["type"] for item in items)),
    }


def _service_words(service: Service) -> set:
    parts = [service.title or "", service.description or "", service.category or ""]
    for faq in service.faq or []:
        parts.append(faq.get("question", ""))
        parts.extend(str(k) for k in faq.get("keywords") or [])
    return set(tokenize(" ".join(parts)))


async def search_knowledge(db: AsyncSession, query_text: str, limit: int = 10) -> List[Dict[str, Any]]:
    """Rank active services by the share of query tokens they contain. Non-matching services are omitted."""
    query_tokens = list(dict.fromkeys(tokenize(query_text)))
    if not query_tokens:
        return []

    result = await db.execute(select(Service).where(Service.is_active == True))  # noqa: E712
    scored = []
    for service in result.scalars().all():
        words = _service_words(service)
        matched = sum(1 for token in query_tokens if token in words)
        if matched:
            scored.append((matched / len(query_tokens), service))

    scored.sort(key=lambda pair: (-pair[0], pair[1].title))
    logger.debug("[KB] '%s' matched %d service(s)", query_text, len(scored))
    return [
        {
            "id": service.id,
            "title": service.title,
            "description": service.description,
            "category": service.category,
            "type": "service",
            "relevance": round(relevance, 3),
        }
        for relevance, service in scored[:limit]
    ]
