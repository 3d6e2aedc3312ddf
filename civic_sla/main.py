"""
Civic SLA - Main Application
=============================

SLA lifecycle service for civic issue reports.

Modules:
- SLA Lifecycle: deadlines, progress, escalation sweeps and reporting

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects and the escalation engine
- Infrastructure: Database, policy file, webhook, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Configuration and Core
from civic_sla.config import settings
from civic_sla.core import ApplicationException

# Infrastructure
from civic_sla.infrastructure.database import (
    init_database, close_database, create_tables, get_session_context
)

# SLA Module
from civic_sla.sla.infrastructure import (
    SLAConfigManager,
    WebhookEscalationNotifier,
    SLAScheduler,
    SQLAlchemyIssueRepository,
)
from civic_sla.sla.application import EscalationSweepService
from civic_sla.sla.interfaces import sla_router

# Shared
from civic_sla.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler
)
from civic_sla.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA policy and start watching the file
    4. Create the escalation notifier
    5. Start the periodic escalation sweep

    SHUTDOWN:
    1. Stop the sweep scheduler
    2. Stop the policy file watcher
    3. Close the webhook client
    4. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Civic SLA service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Tables are created here for development; production schemas are migrated
    try:
        await create_tables()
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database not available, running in degraded mode", extra={"error": str(e)})

    logger.info("Loading SLA policy", extra={"path": str(settings.sla_config_path)})
    sla_config_manager = SLAConfigManager()
    sla_config_manager.load(settings.sla_config_path)
    sla_config_manager.start_watching()

    notifier = WebhookEscalationNotifier()

    async def escalation_sweep_job():
        """Periodic escalation sweep over every department."""
        async with get_session_context() as session:
            sweep = EscalationSweepService(
                SQLAlchemyIssueRepository(session),
                sla_config_manager,
                notifier=notifier,
                batch_size=settings.sla_sweep_batch_size,
                time_budget_seconds=settings.sla_sweep_time_budget_seconds,
                conflict_retries=settings.sla_conflict_retries
            )
            try:
                await sweep.run()
            except ApplicationException as e:
                logger.error("Scheduled escalation sweep failed", extra={"error": e.message})

    sla_scheduler = SLAScheduler(interval_seconds=settings.sla_sweep_interval)
    await sla_scheduler.start(escalation_sweep_job)

    # Store services in app state for dependency injection
    app.state.sla_config = sla_config_manager
    app.state.escalation_notifier = notifier
    app.state.sla_scheduler = sla_scheduler

    logger.info("Civic SLA service started")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Civic SLA service")

    await sla_scheduler.stop()
    sla_config_manager.stop_watching()
    await notifier.close()
    await close_database()

    logger.info("Civic SLA service shutdown complete")


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    application = FastAPI(
        title="Civic SLA API",
        description="""
    ## SLA Lifecycle Service for Civic Issues

    Tracks the service-level deadline of every reported civic issue, escalates
    issues as their deadline approaches and reports SLA health per department.

    ---

    ### SLA Lifecycle Module

    **Endpoints:**
    - `POST /sla/issues` - Register an issue and compute its deadline
    - `GET /sla/issues/{id}` - Live SLA progress of one issue
    - `PUT /sla/issues/{id}/priority` - Change priority, recompute deadline
    - `POST /sla/issues/{id}/escalate` - Escalate one issue on demand
    - `PATCH /sla/issues/{id}/status` - Change issue status
    - `POST /sla/escalate` - Run an escalation sweep
    - `GET /sla/statistics` - SLA health counts
    - `GET /sla/overdue` - Overdue issues, most overdue first

    ---

    ### Configuration

    **Default SLA durations:**

    | Priority | Duration |
    |----------|----------|
    | Urgent   | 24 hours |
    | High     | 72 hours |
    | Medium   | 7 days   |
    | Low      | 14 days  |

    **Escalation thresholds** (percentage of the window elapsed):
    warning at 50%, urgent at 80%, breached at 100%.

    Durations and thresholds are read from `sla_config.yaml` and reloaded
    when the file changes.
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

    # === Custom Middleware (from shared) ===
    application.add_middleware(LoggingMiddleware)
    application.add_middleware(CorrelationIDMiddleware)
    application.add_exception_handler(ApplicationException, application_exception_handler)
    application.add_exception_handler(Exception, global_exception_handler)

    # === Include Module Routers ===
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
                            "sla_scheduler": "running"
                        }
                    }
                }
            }
        }
    })
    async def health_check(request: Request):
        """
        Health check endpoint for load balancers and orchestrators.

        Reports whether the SLA policy is loaded and the sweep scheduler is
        running.
        """
        scheduler = getattr(request.app.state, "sla_scheduler", None)
        config = getattr(request.app.state, "sla_config", None)
        checks = {
            "sla_config": "loaded" if config is not None else "defaults",
            "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped"
        }

        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": checks
        }

    @application.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "sla": {
                    "prefix": "/sla",
                    "endpoints": [
                        "POST /sla/issues - Register issue",
                        "GET /sla/issues/{id} - Get SLA progress",
                        "PUT /sla/issues/{id}/priority - Change priority",
                        "POST /sla/issues/{id}/escalate - Escalate issue",
                        "PATCH /sla/issues/{id}/status - Change status",
                        "POST /sla/escalate - Run escalation sweep",
                        "GET /sla/statistics - Get SLA statistics",
                        "GET /sla/overdue - List overdue issues"
                    ]
                }
            }
        }

    return application


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "civic_sla.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
