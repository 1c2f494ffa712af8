"""Health endpoints"""

from datetime import datetime

from fastapi import APIRouter, Depends

from portal.config import settings
from portal.api.deps import get_ai_gateway
from portal.schemas import HealthResponse, AIHealthResponse
from portal.services.ai_gateway import AIGateway

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("", response_model=HealthResponse)
async def health():
    return HealthResponse(
        status="ok",
        timestamp=datetime.utcnow(),
        environment=settings.environment,
        version=settings.app_version,
    )


@router.get("/ai", response_model=AIHealthResponse)
async def ai_health(gateway: AIGateway = Depends(get_ai_gateway)):
    """Probe the AI backend. A disabled gateway reports unreachable without a request."""
    return AIHealthResponse(
        dialect=gateway.dialect,
        enabled=gateway.enabled,
        reachable=await gateway.health_check(),
    )
