"""Dependency injection for FastAPI endpoints"""

from fastapi import Request
from qbo_ingest.infrastructure.database.writer import ReportWriter
from qbo_ingest.infrastructure.security.token_vault import TokenVault
from qbo_ingest.services.sync import SyncOrchestrator


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Provide the process-wide sync orchestrator"""
    return request.app.state.orchestrator


def get_vault(request: Request) -> TokenVault:
    """Provide the token vault (shares its refresh locks across requests)"""
    return request.app.state.vault


def get_writer(request: Request) -> ReportWriter:
    return ReportWriter(request.app.state.database)
