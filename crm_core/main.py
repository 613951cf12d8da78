"""
WhatsApp CRM Core - automation, follow-up and pipeline API
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from crm_core.core.config import settings
from crm_core.core.container import ServiceContainer, build_container
from crm_core.core.exceptions import CRMError
from crm_core.api.v1 import automation, followup, pipeline, whatsapp
from crm_core.services.scheduler import FollowUpScheduler

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(services: Optional[ServiceContainer] = None, start_scheduler: Optional[bool] = None) -> FastAPI:
    if start_scheduler is None:
        start_scheduler = settings.FOLLOWUP_SCHEDULER_ENABLED
    services = services or build_container()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = FollowUpScheduler(services.followup) if start_scheduler else None
        if scheduler:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler:
                scheduler.shutdown()
            await services.close()

    app = FastAPI(
        title="WhatsApp CRM Core API",
        description="Automation rules, deal follow-ups and sales pipeline for WhatsApp conversations",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CRMError)
    async def crm_error_handler(request: Request, exc: CRMError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.public_message or exc.message},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    # API routes
    app.include_router(whatsapp.router, prefix="/v1/whatsapp", tags=["whatsapp"])
    app.include_router(automation.router, prefix="/v1/automation", tags=["automation"])
    app.include_router(followup.router, prefix="/v1/followup", tags=["followup"])
    app.include_router(pipeline.router, prefix="/v1/pipeline", tags=["pipeline"])

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": "whatsapp-crm-core"}

    @app.get("/")
    async def root():
        return {
            "service": "whatsapp-crm-core",
            "version": "1.0.0",
            "docs": "/docs"
        }

    return app


configure_logging()
app = create_app()
