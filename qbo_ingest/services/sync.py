"""
Sync orchestrator - runs report ingestion for every connected account.

Per account the run moves PENDING -> FETCHING -> MAPPING -> PERSISTING for
each report type and ends COMPLETED or FAILED. Transient errors are retried
here (never in the fetcher) with delay = base * attempt; everything else
fails the account at once. Accounts are isolated from each other: one
account failing never cancels or rolls back another.
"""

import asyncio
import logging
import time
from datetime import date, datetime, timezone
from typing import Awaitable, Callable, List, Optional, Sequence
from qbo_ingest.config import settings
from qbo_ingest.domain.exceptions import is_transient
from qbo_ingest.domain.models import (
    AccountSyncResult,
    ConnectedAccount,
    IngestionResult,
    ReportType,
    SyncStatus,
)
from qbo_ingest.domain.taxonomy import KpiTaxonomy
from qbo_ingest.infrastructure.clients.qbo_reports import ReportClient
from qbo_ingest.infrastructure.database.repositories import ConnectionRepository, SyncLogRepository
from qbo_ingest.infrastructure.database.session import Database
from qbo_ingest.infrastructure.database.writer import ReportWriter
from qbo_ingest.infrastructure.observability.logging import log_sync_outcome
from qbo_ingest.infrastructure.observability.metrics import record_sync_outcome, sync_retry_counter
from qbo_ingest.infrastructure.security.token_vault import TokenVault
from qbo_ingest.services.ingestion import ReportIngestor
from qbo_ingest.utils.date_utils import previous_month_range

logger = logging.getLogger(__name__)


def failure_message(report_type: Optional[ReportType]) -> str:
    """Generic, user-facing failure text naming only the report type"""
    if report_type is None:
        return "Failed to sync reports"
    return f"Failed to sync {report_type.value} report"


class SyncOrchestrator:
    """Fans ingestion out across connected accounts and records one outcome per run"""

    def __init__(
        self,
        database: Database,
        ingestor: ReportIngestor,
        report_types: Sequence[ReportType] | None = None,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.database = database
        self.ingestor = ingestor
        self.report_types = list(report_types or [ReportType(name) for name in settings.sync_report_types])
        self.max_attempts = max_attempts or settings.sync_max_attempts
        self.backoff_base = settings.sync_backoff_base_seconds if backoff_base is None else backoff_base
        self.sleep = sleep

    async def sync_all(
        self,
        initiated_by: str,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> List[AccountSyncResult]:
        """Sync every active connection concurrently"""
        async with self.database.session() as db:
            connections = await ConnectionRepository(db).list_active()
            accounts = [
                ConnectedAccount(
                    id=str(c.id),
                    realm_id=c.realm_id,
                    organization_id=c.organization_id,
                    company_name=c.company_name,
                )
                for c in connections
            ]

        logger.info("Sync started", extra={"initiated_by": initiated_by, "accounts": len(accounts)})
        return list(
            await asyncio.gather(
                *(self.sync_account(account, initiated_by, start_date, end_date) for account in accounts)
            )
        )

    async def sync_connection(
        self,
        connection_id: str,
        initiated_by: str,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> AccountSyncResult:
        """Sync a single connection; unknown or inactive ids produce a FAILED outcome"""
        async with self.database.session() as db:
            connection = await ConnectionRepository(db).get(connection_id)
            account = (
                ConnectedAccount(
                    id=str(connection.id),
                    realm_id=connection.realm_id,
                    organization_id=connection.organization_id,
                    company_name=connection.company_name,
                )
                if connection is not None and connection.is_active
                else None
            )

        if account is None:
            started_at = datetime.now(timezone.utc)
            result = AccountSyncResult(connection_id=str(connection_id), realm_id=None, initiated_by=initiated_by)
            result.transition(SyncStatus.FAILED)
            result.error = failure_message(None)
            logger.warning(
                "Sync requested for unknown connection",
                extra={"connection_id": str(connection_id), "initiated_by": initiated_by},
            )
            await self._finish(result, started_at, time.time())
            return result

        return await self.sync_account(account, initiated_by, start_date, end_date)

    async def sync_account(
        self,
        account: ConnectedAccount,
        initiated_by: str,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> AccountSyncResult:
        """
        Ingest every configured report type for one account.

        Never raises: failures end the run in FAILED and are recorded in the
        sync log like any other outcome.
        """
        if start_date is None or end_date is None:
            start_date, end_date = previous_month_range()

        started_at = datetime.now(timezone.utc)
        start_time = time.time()
        result = AccountSyncResult(connection_id=account.id, realm_id=account.realm_id, initiated_by=initiated_by)
        current: Optional[ReportType] = None

        try:
            for report_type in self.report_types:
                current = report_type
                ingested = await self._ingest_with_retry(account, report_type, start_date, end_date, result)
                result.reports.append(ingested)
            result.transition(SyncStatus.COMPLETED)

        except Exception as e:
            result.transition(SyncStatus.FAILED)
            result.failed_report_type = current
            result.error = failure_message(current)
            logger.error(
                f"Report sync failed: {e}",
                extra={
                    "connection_id": account.id,
                    "realm_id": account.realm_id,
                    "report_type": current.value if current else None,
                    "error_type": type(e).__name__,
                },
            )

        await self._finish(result, started_at, start_time)
        return result

    async def _ingest_with_retry(
        self,
        account: ConnectedAccount,
        report_type: ReportType,
        start_date: date,
        end_date: date,
        result: AccountSyncResult,
    ) -> IngestionResult:
        attempt = 0
        while True:
            attempt += 1
            result.attempts += 1
            try:
                return await self.ingestor.ingest(
                    account, report_type, start_date, end_date, on_stage=result.transition
                )
            except Exception as e:
                if not is_transient(e) or attempt >= self.max_attempts:
                    raise

                sync_retry_counter.inc()
                delay = self.backoff_base * attempt
                logger.warning(
                    "Transient failure; retrying",
                    extra={
                        "realm_id": account.realm_id,
                        "report_type": report_type.value,
                        "attempt": attempt,
                        "delay_seconds": delay,
                        "error": str(e),
                    },
                )
                await self.sleep(delay)

    async def _finish(self, result: AccountSyncResult, started_at: datetime, start_time: float) -> None:
        """Write the sync-log row, stamp last_synced_at, emit metrics and the outcome log"""
        finished_at = datetime.now(timezone.utc)
        try:
            async with self.database.session() as db:
                await SyncLogRepository(db).record(result, started_at, finished_at)
                if result.status is SyncStatus.COMPLETED:
                    await ConnectionRepository(db).mark_synced(result.connection_id, finished_at)
                await db.commit()
        except Exception as e:
            # Outcome stands even when the log row cannot be written
            logger.error(
                f"Failed to record sync outcome: {e}",
                extra={"connection_id": result.connection_id, "status": result.status.value},
            )

        record_sync_outcome(result.status.value)
        log_sync_outcome(
            connection_id=result.connection_id,
            realm_id=result.realm_id,
            initiated_by=result.initiated_by,
            status=result.status.value,
            reports=[report.report_type.value for report in result.reports],
            duration_ms=(time.time() - start_time) * 1000,
            error=result.error,
        )


def load_taxonomy() -> KpiTaxonomy:
    if settings.kpi_taxonomy_path:
        return KpiTaxonomy.from_file(settings.kpi_taxonomy_path)
    return KpiTaxonomy.default()


def create_orchestrator(database: Database, vault: TokenVault) -> SyncOrchestrator:
    """Wire fetcher, writer and ingestor around a shared database and vault"""
    ingestor = ReportIngestor(ReportClient(vault), ReportWriter(database), load_taxonomy())
    return SyncOrchestrator(database, ingestor)
