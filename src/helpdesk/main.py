"""
Helpdesk SLA Engine - Main Application
=======================================

SLA compliance engine for the support-ticket helpdesk.

Attaches response and resolution deadlines to tickets by priority, tracks
breaches and answers compliance, at-risk and breached queries under
role-based visibility.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, config watcher, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from helpdesk.config import settings
from helpdesk.core import ApplicationException

# Infrastructure
from helpdesk.infrastructure.database import (
    init_database, close_database, create_tables, get_session_context
)

# SLA Module
from helpdesk.sla.infrastructure import (
    SLAConfigManager, SLAScheduler,
    SQLAlchemyPolicyRepository, SQLAlchemyTicketRepository
)
from helpdesk.sla.application import PolicyStore, BreachReconciler
from helpdesk.sla.interfaces import sla_router

# Shared
from helpdesk.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler
)
from helpdesk.shared.infrastructure.logging import setup_logging, get_logger, log_latency

logger = get_logger(__name__)


async def sla_sweep_job() -> None:
    """Background breach sweep. Failures are logged and never stop the scheduler."""
    try:
        async with get_session_context() as session:
            with log_latency(logger, "sla_breach_sweep"):
                await BreachReconciler(SQLAlchemyTicketRepository(session)).sweep()
    except Exception:
        logger.exception("SLA breach sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA configuration and watch it for changes
    4. Seed default policies for priorities without one
    5. Start the breach sweep scheduler

    SHUTDOWN:
    1. Stop scheduler
    2. Stop config watcher
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting SLA engine", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()

    # Create tables (use migrations in production)
    logger.info("Creating database tables")
    await create_tables()

    logger.info("Loading SLA configuration")
    config_manager = SLAConfigManager()
    config_manager.load(settings.sla_config_path)
    config_manager.start_watching()

    async with get_session_context() as session:
        await PolicyStore(SQLAlchemyPolicyRepository(session)).seed_defaults(config_manager.config)

    scheduler = SLAScheduler(interval_seconds=settings.sla_evaluation_interval)
    if settings.sla_scheduler_enabled:
        await scheduler.start(sla_sweep_job)
    else:
        logger.info("SLA scheduler disabled")

    # Store services in app state for dependency injection
    app.state.settings = settings
    app.state.sla_config_manager = config_manager
    app.state.sla_scheduler = scheduler

    logger.info("SLA engine started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down SLA engine")
    await scheduler.stop()
    config_manager.stop_watching()
    await close_database()
    logger.info("SLA engine shutdown complete")


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    application = FastAPI(
        title="Helpdesk SLA Engine",
        description="""
    ## Helpdesk SLA Compliance Engine

    **Policies:** `GET/POST /sla/policies`, `GET/PATCH/DELETE /sla/policies/{id}`

    **Ticket events:** `POST /sla/tickets`, `POST /sla/tickets/{id}/first-response`,
    `POST /sla/tickets/{id}/resolve`, `POST /sla/tickets/{id}/reopen`,
    `PATCH /sla/tickets/{id}`, `PUT /sla/tickets/{id}/policy`

    **Queries:** `GET /sla/tickets/{id}`, `GET /sla/compliance`, `GET /sla/at-risk`,
    `GET /sla/breached`

    **Reconciliation:** `POST /sla/reconcile`, `POST /sla/tickets/{id}/reconcile`

    Caller identity is read from the `X-User-Id` and `X-User-Role` headers.

    **Default policies (response / resolution):**

    | Priority | Response | Resolution |
    |----------|----------|------------|
    | Urgent   | 15 min   | 2h         |
    | High     | 1h       | 8h         |
    | Medium   | 4h       | 24h        |
    | Low      | 8h       | 48h        |
    """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # === CORS Middleware ===
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Last added runs first, so the correlation id exists before logging
    application.add_middleware(LoggingMiddleware)
    application.add_middleware(CorrelationIDMiddleware)
    application.add_exception_handler(ApplicationException, application_exception_handler)
    application.add_exception_handler(Exception, global_exception_handler)

    application.include_router(sla_router)

    @application.get("/health", tags=["Health"], responses={
        200: {
            "description": "Service is healthy",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "version": "1.0.0",
                        "environment": "development",
                        "checks": {
                            "sla_config": "loaded",
                            "sla_scheduler": "running",
                            "next_sweep_at": "2024-01-01T00:01:00+00:00"
                        }
                    }
                }
            }
        }
    })
    async def health_check(request: Request):
        """Health check endpoint for load balancers and orchestrators."""
        scheduler = getattr(request.app.state, "sla_scheduler", None)
        next_run = scheduler.next_run_at if scheduler else None
        checks = {
            "sla_config": "loaded" if getattr(request.app.state, "sla_config_manager", None) else "defaults",
            "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
            "next_sweep_at": next_run.isoformat() if next_run else None,
        }
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": checks
        }

    return application


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "helpdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
