"""
Rafiq Citizen Portal - Main Application Entry Point
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from portal.config import settings
from portal.db import init_db, async_session_maker
from portal.logging_config import setup_logging, set_request_context, generate_request_id
from portal.api import (
    auth_router,
    assistant_router,
    conversations_router,
    feedback_router,
    health_router,
    knowledge_router,
    services_router,
    sync_router,
)
from portal.scripts.seed_data import seed_defaults
from portal.services.ai_gateway import SessionRegistry, build_gateway
from portal.services.knowledge_fallback import get_fallback_resolver

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - runs on startup and shutdown"""
    setup_logging(settings.log_level, settings.log_json)
    logger.info("%s starting up...", settings.app_name)

    await init_db()
    async with async_session_maker() as db:
        await seed_defaults(db)
    logger.info("Database initialized")

    yield

    await app.state.ai_gateway.aclose()
    logger.info("%s shutdown complete.", settings.app_name)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description="Bilingual citizen portal: service catalog, offline sync and AI assistant",
        version=settings.app_version,
        lifespan=lifespan,
    )

    # One gateway (and one session registry) per process
    app.state.session_registry = SessionRegistry()
    app.state.ai_gateway = build_gateway(
        settings,
        registry=app.state.session_registry,
        resolver=get_fallback_resolver(),
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = generate_request_id(request.headers.get("X-Request-ID"))
        set_request_context(request_id=request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    app.include_router(health_router, prefix=settings.api_prefix)
    app.include_router(auth_router, prefix=settings.api_prefix)
    app.include_router(services_router, prefix=settings.api_prefix)
    app.include_router(feedback_router, prefix=settings.api_prefix)
    app.include_router(sync_router, prefix=settings.api_prefix)
    app.include_router(knowledge_router, prefix=settings.api_prefix)
    app.include_router(assistant_router, prefix=settings.api_prefix)
    app.include_router(conversations_router, prefix=settings.api_prefix)

    @app.get("/")
    async def root():
        return {
            "name": settings.app_name,
            "status": "healthy",
            "version": settings.app_version,
            "ai_gateway": app.state.ai_gateway.dialect if app.state.ai_gateway.enabled else "offline",
        }

    return app


app = create_app()
