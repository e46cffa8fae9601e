"""GET /v1/reports - Stored report documents and their KPI"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from qbo_ingest.api.v1.schemas import ReportDocument, ReportListResponse
from qbo_ingest.api.dependencies import get_writer
from qbo_ingest.infrastructure.database.session import get_db
from qbo_ingest.infrastructure.database.repositories import ReportRepository
from qbo_ingest.infrastructure.database.writer import ReportWriter
from qbo_ingest.domain.exceptions import PersistenceError
from qbo_ingest.domain.models import ReportType

router = APIRouter()


@router.get("/reports/{realm_id}/{report_type}", response_model=ReportListResponse)
async def list_reports(
    realm_id: str,
    report_type: ReportType,
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """
    Retrieve stored documents for a realm, newest first.

    Returns:
        Report headers with their KPI documents
    """
    documents = await ReportRepository(db).list_documents(realm_id, report_type, limit=limit)

    return ReportListResponse(
        realm_id=realm_id,
        report_type=report_type.value,
        documents=[
            ReportDocument(
                report_id=d.id,
                report_name=d.report_name,
                report_basis=d.report_basis,
                start_date=d.start_date,
                end_date=d.end_date,
                currency=d.currency,
                generated_at=d.generated_at,
                kpi=d.kpi,
            )
            for d in documents
        ],
    )


@router.post("/reports/{report_type}/{report_id}/kpi")
async def recompute_kpi(
    report_type: ReportType,
    report_id: int,
    db: AsyncSession = Depends(get_db),
    writer: ReportWriter = Depends(get_writer),
):
    """Rebuild a document's KPI from its stored lines"""
    if await ReportRepository(db).get(report_type, report_id) is None:
        raise HTTPException(status_code=404, detail=f"{report_type.value} report not found")
    try:
        kpi = await writer.recompute_kpi(report_type, report_id)
    except PersistenceError as e:
        logging.error(f"KPI recompute failed: {e}", extra={"report_id": report_id})
        raise HTTPException(status_code=500, detail=f"Failed to recompute {report_type.value} KPI")
    return {"report_id": report_id, "kpi": kpi}
