"""Knowledge base endpoints"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db import get_db
from portal.schemas import KnowledgeListResponse, KnowledgeSearchRequest, KnowledgeSearchResponse
from portal.services.knowledge_service import get_knowledge_base, search_knowledge

router = APIRouter(prefix="/knowledge-base", tags=["Knowledge Base"])


@router.get("", response_model=KnowledgeListResponse)
async def list_knowledge(
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    language: Optional[str] = Query("fr"),
    db: AsyncSession = Depends(get_db),
):
    return await get_knowledge_base(db, search=search, category=category, language=language)


@router.post("/search", response_model=KnowledgeSearchResponse)
async def search(request: KnowledgeSearchRequest, db: AsyncSession = Depends(get_db)):
    if not request.query or not request.query.strip():
        raise HTTPException(status_code=400, detail="Search query is required")

    results = await search_knowledge(db, request.query, limit=request.limit)
    return {"results": results, "query": request.query, "total": len(results)}
