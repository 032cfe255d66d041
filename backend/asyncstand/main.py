from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from asyncstand.core.config import settings
from asyncstand.core.logging import configure_logging
import asyncstand.models  # noqa: F401  # force model registration

from asyncstand.api.v1.auth import router as auth_router
from asyncstand.api.v1.organizations import router as organizations_router
from asyncstand.api.v1.teams import integrations_router
from asyncstand.api.v1.teams import router as teams_router
from asyncstand.api.v1.standup_configs import router as standup_configs_router
from asyncstand.api.v1.standups import router as standups_router
from asyncstand.api.v1.public import router as public_router
from asyncstand.api.v1.features import admin_router as features_admin_router
from asyncstand.api.v1.features import router as features_router
from asyncstand.api.v1.billing import router as billing_router
from asyncstand.api.v1.audit import router as audit_router
from asyncstand.api.v1.slack import router as slack_router
from asyncstand.db.session import dispose_engine
from asyncstand.jobs.scheduler import get_scheduler, shutdown_scheduler, start_scheduler

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.SCHEDULER_ENABLED:
        start_scheduler()
    else:
        logger.info("scheduler_disabled")
    try:
        yield
    finally:
        shutdown_scheduler()
        await dispose_engine()


def create_application() -> FastAPI:
    configure_logging()
    app = FastAPI(title="AsyncStand API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def root():
        return {"status": "ok", "service": "asyncstand"}

    @app.get("/health")
    def health():
        scheduler = get_scheduler()
        return {
            "status": "ok",
            "environment": settings.environment_name,
            "scheduler": {"running": scheduler.running, "jobs": scheduler.job_ids()},
        }

    # Routers
    app.include_router(auth_router, prefix="/api/v1")
    app.include_router(organizations_router, prefix="/api/v1")
    app.include_router(integrations_router, prefix="/api/v1")
    app.include_router(teams_router, prefix="/api/v1")
    app.include_router(standup_configs_router, prefix="/api/v1")
    app.include_router(standups_router, prefix="/api/v1")
    app.include_router(public_router, prefix="/api/v1")
    app.include_router(features_router, prefix="/api/v1")
    app.include_router(features_admin_router, prefix="/api/v1")
    app.include_router(billing_router, prefix="/api/v1")
    app.include_router(audit_router, prefix="/api/v1")
    app.include_router(slack_router, prefix="/api/v1")

    return app


app = create_application()
