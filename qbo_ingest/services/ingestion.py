"""Fetch, flatten, aggregate and persist one report"""

import logging
from datetime import date
from typing import Any, Callable, Dict, Optional
from qbo_ingest.domain.flattening import flatten_report
from qbo_ingest.domain.kpi import aggregate, cross_checks, log_unbalanced
from qbo_ingest.domain.models import (
    ConnectedAccount,
    FlattenedReport,
    IngestionResult,
    ReportType,
    SyncStatus,
)
from qbo_ingest.domain.taxonomy import KpiTaxonomy
from qbo_ingest.infrastructure.clients.qbo_reports import ReportClient
from qbo_ingest.infrastructure.database.writer import ReportWriter

logger = logging.getLogger(__name__)


class ReportIngestor:
    """Runs one report through the pipeline, announcing each stage"""

    def __init__(self, fetcher: ReportClient, writer: ReportWriter, taxonomy: Optional[KpiTaxonomy] = None):
        self.fetcher = fetcher
        self.writer = writer
        self.taxonomy = taxonomy or KpiTaxonomy.default()

    async def ingest(
        self,
        account: ConnectedAccount,
        report_type: ReportType,
        start_date: date,
        end_date: date,
        on_stage: Callable[[SyncStatus], None] = lambda status: None,
    ) -> IngestionResult:
        """
        Flow:
        1. Fetch the raw report (token refresh on 401 happens inside the fetcher)
        2. Flatten it and compute the KPI document and cross-checks
        3. Persist header, columns, lines and summaries in one transaction
        """
        on_stage(SyncStatus.FETCHING)
        payload = await self.fetcher.fetch(account, report_type, start_date, end_date)

        on_stage(SyncStatus.MAPPING)
        report = self.map(report_type, payload, account.realm_id, start_date, end_date)
        checks = cross_checks(report_type, report.lines, report.summaries, report.kpi)
        log_unbalanced(report_type, account.realm_id, checks)

        on_stage(SyncStatus.PERSISTING)
        saved = await self.writer.save(report)

        return IngestionResult(
            report_type=report_type,
            report_id=saved.report_id,
            columns_count=saved.columns_count,
            rows_count=saved.rows_count,
            summaries_count=saved.summaries_count,
            checks=checks,
        )

    def map(
        self,
        report_type: ReportType,
        payload: Dict[str, Any],
        realm_id: str,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> FlattenedReport:
        """Pure part of the pipeline: flatten and attach the KPI document"""
        report = flatten_report(report_type, payload, realm_id, start_date, end_date, taxonomy=self.taxonomy)
        report.kpi = aggregate(report_type, report.lines, report.summaries, self.taxonomy)
        return report
