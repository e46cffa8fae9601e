"""POST /v1/sync - Trigger report ingestion"""

import logging
from fastapi import APIRouter, Depends, Request

from qbo_ingest.api.v1.schemas import AccountSyncResponse, ReportOutcome, SyncRequest, SyncResponse
from qbo_ingest.api.dependencies import get_orchestrator, get_request_id
from qbo_ingest.domain.models import AccountSyncResult
from qbo_ingest.services.sync import SyncOrchestrator

router = APIRouter()


def to_response(result: AccountSyncResult) -> AccountSyncResponse:
    return AccountSyncResponse(
        connection_id=result.connection_id,
        realm_id=result.realm_id,
        status=result.status.value,
        history=[status.value for status in result.history],
        reports=[
            ReportOutcome(
                report_type=report.report_type.value,
                report_id=report.report_id,
                columns_count=report.columns_count,
                rows_count=report.rows_count,
                summaries_count=report.summaries_count,
                balanced=all(check.balanced for check in report.checks),
            )
            for report in result.reports
        ],
        error=result.error,
    )


@router.post("/sync", response_model=SyncResponse)
async def trigger_sync(
    request_body: SyncRequest,
    request: Request,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """
    Run a sync for one connection or for every active connection.

    Failed accounts are reported in the body with a generic message; the
    request itself still succeeds.
    """
    request_id = get_request_id(request)
    logging.info(
        "Sync triggered",
        extra={
            "request_id": request_id,
            "initiated_by": request_body.initiated_by,
            "connection_id": request_body.connection_id,
        },
    )

    if request_body.connection_id:
        results = [
            await orchestrator.sync_connection(
                request_body.connection_id,
                request_body.initiated_by,
                request_body.start_date,
                request_body.end_date,
            )
        ]
    else:
        results = await orchestrator.sync_all(
            request_body.initiated_by,
            request_body.start_date,
            request_body.end_date,
        )

    return SyncResponse(
        initiated_by=request_body.initiated_by,
        results=[to_response(result) for result in results],
    )
