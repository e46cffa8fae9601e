"""FastAPI application factory"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from qbo_ingest.api.middleware import RequestIDMiddleware, MetricsMiddleware
from qbo_ingest.api.v1 import connections, reports, sync
from qbo_ingest.infrastructure.database.session import Database
from qbo_ingest.infrastructure.observability.logging import setup_logging
from qbo_ingest.infrastructure.security.token_vault import TokenVault
from qbo_ingest.services.sync import SyncOrchestrator, create_orchestrator
from qbo_ingest.config import settings


def create_app(
    database: Database | None = None,
    vault: TokenVault | None = None,
    orchestrator: SyncOrchestrator | None = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    The database object lives for the lifetime of the app and is disposed on
    shutdown. Collaborators can be passed in to replace the defaults.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level)
        app.state.database = database or Database()
        app.state.vault = vault or TokenVault(app.state.database)
        app.state.orchestrator = orchestrator or create_orchestrator(app.state.database, app.state.vault)
        try:
            yield
        finally:
            await app.state.database.dispose()

    app = FastAPI(
        title="QuickBooks Report Ingestion",
        description="Fetches, normalizes and stores QuickBooks financial reports",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(sync.router, prefix="/v1", tags=["sync"])
    app.include_router(connections.router, prefix="/v1", tags=["connections"])
    app.include_router(reports.router, prefix="/v1", tags=["reports"])

    return app


app = create_app()
