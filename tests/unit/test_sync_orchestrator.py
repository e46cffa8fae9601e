"""Unit tests for the sync orchestrator: retries, state history and failure isolation"""

import pytest
from datetime import date
from unittest.mock import AsyncMock
from qbo_ingest.domain.exceptions import AuthRefreshError, MappingError, TransientNetworkError
from qbo_ingest.domain.models import IngestionResult, ReportType, SyncStatus
from qbo_ingest.infrastructure.database.repositories import ConnectionRepository, SyncLogRepository
from qbo_ingest.services.sync import SyncOrchestrator

JAN = (date(2024, 1, 1), date(2024, 1, 31))


def ingested(report_type: ReportType) -> IngestionResult:
    return IngestionResult(report_type=report_type, report_id=1, columns_count=0, rows_count=3, summaries_count=1)


async def succeed(account, report_type, start, end, on_stage):
    for stage in (SyncStatus.FETCHING, SyncStatus.MAPPING, SyncStatus.PERSISTING):
        on_stage(stage)
    return ingested(report_type)


def make_orchestrator(database, ingestor, report_types=(ReportType.PROFIT_AND_LOSS,)):
    sleep = AsyncMock()
    orchestrator = SyncOrchestrator(
        database,
        ingestor,
        report_types=list(report_types),
        max_attempts=3,
        backoff_base=1.0,
        sleep=sleep,
    )
    return orchestrator, sleep


async def test_successful_run_walks_every_state(database, make_connection):
    account = await make_connection()
    ingestor = AsyncMock()
    ingestor.ingest.side_effect = succeed
    orchestrator, sleep = make_orchestrator(database, ingestor)

    result = await orchestrator.sync_account(account, "manual", *JAN)

    assert result.status is SyncStatus.COMPLETED
    assert result.history == [
        SyncStatus.PENDING,
        SyncStatus.FETCHING,
        SyncStatus.MAPPING,
        SyncStatus.PERSISTING,
        SyncStatus.COMPLETED,
    ]
    assert result.error is None
    assert result.attempts == 1
    sleep.assert_not_awaited()


async def test_transient_failures_stop_after_max_attempts(database, make_connection):
    """Linear backoff: base * attempt between attempts, never after the last"""
    account = await make_connection()
    ingestor = AsyncMock()
    ingestor.ingest.side_effect = TransientNetworkError("Report API timeout after 30.0s")
    orchestrator, sleep = make_orchestrator(database, ingestor)

    result = await orchestrator.sync_account(account, "manual", *JAN)

    assert result.status is SyncStatus.FAILED
    assert ingestor.ingest.await_count == 3
    assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]
    assert result.attempts == 3


async def test_transient_failure_then_success(database, make_connection):
    account = await make_connection()
    ingestor = AsyncMock()
    ingestor.ingest.side_effect = [TransientNetworkError("Report API error: 503"), ingested(ReportType.PROFIT_AND_LOSS)]
    orchestrator, sleep = make_orchestrator(database, ingestor)

    result = await orchestrator.sync_account(account, "manual", *JAN)

    assert result.status is SyncStatus.COMPLETED
    assert result.attempts == 2
    sleep.assert_awaited_once_with(1.0)


async def test_untyped_connection_reset_is_retried(database, make_connection):
    account = await make_connection()
    ingestor = AsyncMock()
    ingestor.ingest.side_effect = [OSError("read ECONNRESET"), ingested(ReportType.PROFIT_AND_LOSS)]
    orchestrator, _ = make_orchestrator(database, ingestor)

    result = await orchestrator.sync_account(account, "manual", *JAN)

    assert result.status is SyncStatus.COMPLETED
    assert ingestor.ingest.await_count == 2


@pytest.mark.parametrize("error", [AuthRefreshError("invalid_grant"), MappingError("Unknown row type")])
async def test_non_transient_failure_is_not_retried(database, make_connection, error):
    account = await make_connection()
    ingestor = AsyncMock()
    ingestor.ingest.side_effect = error
    orchestrator, sleep = make_orchestrator(database, ingestor)

    result = await orchestrator.sync_account(account, "manual", *JAN)

    assert result.status is SyncStatus.FAILED
    assert ingestor.ingest.await_count == 1
    sleep.assert_not_awaited()


async def test_failure_message_names_only_the_report_type(database, make_connection):
    account = await make_connection()
    ingestor = AsyncMock()
    ingestor.ingest.side_effect = [
        ingested(ReportType.TRIAL_BALANCE),
        MappingError("Row must be an object, got str; token=abc123"),
    ]
    orchestrator, _ = make_orchestrator(
        database, ingestor, report_types=(ReportType.TRIAL_BALANCE, ReportType.BALANCE_SHEET)
    )

    result = await orchestrator.sync_account(account, "manual", *JAN)

    assert result.status is SyncStatus.FAILED
    assert result.error == "Failed to sync BalanceSheet report"
    assert result.failed_report_type is ReportType.BALANCE_SHEET
    assert [r.report_type for r in result.reports] == [ReportType.TRIAL_BALANCE]


async def test_failure_isolation_across_accounts(database, make_connection):
    """One account failing never stops another"""
    good = await make_connection(realm_id="1001")
    bad = await make_connection(realm_id="2002")

    async def ingest(account, report_type, start, end, on_stage):
        if account.realm_id == bad.realm_id:
            raise AuthRefreshError("invalid_grant")
        return await succeed(account, report_type, start, end, on_stage)

    ingestor = AsyncMock()
    ingestor.ingest.side_effect = ingest
    orchestrator, _ = make_orchestrator(database, ingestor)

    results = await orchestrator.sync_all("automatic", *JAN)

    by_realm = {r.realm_id: r for r in results}
    assert by_realm["1001"].status is SyncStatus.COMPLETED
    assert by_realm["2002"].status is SyncStatus.FAILED
    assert by_realm["2002"].error == "Failed to sync ProfitAndLoss report"


async def test_one_sync_log_row_per_run(database, make_connection):
    account = await make_connection()
    ingestor = AsyncMock()
    ingestor.ingest.side_effect = succeed
    orchestrator, _ = make_orchestrator(database, ingestor)

    await orchestrator.sync_account(account, "manual", *JAN)

    async with database.session() as db:
        logs = await SyncLogRepository(db).recent(account.id)
        connection = await ConnectionRepository(db).get(account.id)
    assert len(logs) == 1
    assert logs[0].status == "completed"
    assert logs[0].initiated_by == "manual"
    assert logs[0].report_types == ["ProfitAndLoss"]
    assert logs[0].attempts == 1
    assert connection.last_synced_at is not None


async def test_failed_run_is_logged_and_not_marked_synced(database, make_connection):
    account = await make_connection()
    ingestor = AsyncMock()
    ingestor.ingest.side_effect = MappingError("bad payload")
    orchestrator, _ = make_orchestrator(database, ingestor)

    await orchestrator.sync_account(account, "automatic", *JAN)

    async with database.session() as db:
        logs = await SyncLogRepository(db).recent(account.id)
        connection = await ConnectionRepository(db).get(account.id)
    assert [log.status for log in logs] == ["failed"]
    assert logs[0].error == "Failed to sync ProfitAndLoss report"
    assert connection.last_synced_at is None


async def test_unknown_connection_fails_without_ingesting(database):
    ingestor = AsyncMock()
    orchestrator, _ = make_orchestrator(database, ingestor)

    result = await orchestrator.sync_connection("7a4b5d0e-0000-4000-8000-000000000000", "manual", *JAN)

    assert result.status is SyncStatus.FAILED
    assert result.error == "Failed to sync reports"
    ingestor.ingest.assert_not_awaited()


async def test_default_period_is_previous_month(database, make_connection):
    account = await make_connection()
    ingestor = AsyncMock()
    ingestor.ingest.side_effect = succeed
    orchestrator, _ = make_orchestrator(database, ingestor)

    await orchestrator.sync_account(account, "manual")

    _, _, start, end = ingestor.ingest.await_args.args
    assert start.day == 1
    assert end < date.today()
    assert (start.year, start.month) == (end.year, end.month)
