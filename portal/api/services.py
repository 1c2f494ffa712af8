"""
Service catalog endpoints.

  GET    /api/services              — list active services (category, search)
  GET    /api/services/categories   — distinct categories
  GET    /api/services/stats        — counts for the admin dashboard
  GET    /api/services/{id}         — one service
  POST   /api/services              — admin: create or replace by id
  PUT    /api/services/{id}         — admin: partial update
  DELETE /api/services/{id}         — admin: soft delete
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db import get_db, User
from portal.api.deps import require_admin
from portal.schemas import (
    ServiceCreate, ServiceUpdate, ServiceResponse, ServiceListResponse, ServiceStats,
)
from portal.services import catalog_service

router = APIRouter(prefix="/services", tags=["Services"])


@router.get("", response_model=ServiceListResponse)
async def list_services(
    category: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    services = await catalog_service.list_services(db, category=category, search=search)
    return ServiceListResponse(
        services=[ServiceResponse.model_validate(s) for s in services],
        total=len(services),
    )


@router.get("/categories", response_model=List[str])
async def list_categories(db: AsyncSession = Depends(get_db)):
    return await catalog_service.list_categories(db)


@router.get("/stats", response_model=ServiceStats)
async def get_stats(db: AsyncSession = Depends(get_db), _admin: User = Depends(require_admin)):
    return await catalog_service.service_stats(db)


@router.get("/{service_id}", response_model=ServiceResponse)
async def get_service(service_id: str, db: AsyncSession = Depends(get_db)):
    service = await catalog_service.get_service(db, service_id)
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")
    return service


@router.post("", response_model=ServiceResponse)
async def upsert_service(
    data: ServiceCreate,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    """Create or fully replace a service, keyed by its id."""
    return await catalog_service.upsert_service(db, data.model_dump())


@router.put("/{service_id}", response_model=ServiceResponse)
async def update_service(
    service_id: str,
    data: ServiceUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    service = await catalog_service.update_service(db, service_id, data.model_dump(exclude_unset=True))
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")
    return service


@router.delete("/{service_id}")
async def delete_service(
    service_id: str,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    if not await catalog_service.deactivate_service(db, service_id):
        raise HTTPException(status_code=404, detail="Service not found")
    return {"message": "Service deactivated", "id": service_id}
