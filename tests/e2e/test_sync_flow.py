"""
E2E sync against the in-process mock QuickBooks server.

Accounts:
- 9130355: healthy company; its first access token is revoked upstream so the
  run exercises the 401 refresh-and-retry path
- unavailable-1: reporting API answers 503 until retries run out
"""

import httpx
import pytest
from datetime import date
from unittest.mock import AsyncMock
from mock.qbo_server.main import create_mock_app
from qbo_ingest.domain.models import ReportType, SyncStatus
from qbo_ingest.infrastructure.clients.qbo_oauth import OAuthClient
from qbo_ingest.infrastructure.clients.qbo_reports import ReportClient
from qbo_ingest.infrastructure.database.repositories import ReportRepository, SyncLogRepository
from qbo_ingest.infrastructure.database.writer import ReportWriter
from qbo_ingest.infrastructure.security.token_vault import TokenVault
from qbo_ingest.services.ingestion import ReportIngestor
from qbo_ingest.services.sync import SyncOrchestrator

BASE_URL = "http://qbo.test"
JAN = (date(2024, 1, 1), date(2024, 1, 31))


@pytest.fixture
def mock_qbo():
    return create_mock_app()


@pytest.fixture
def e2e_vault(database, cipher, mock_qbo):
    oauth = OAuthClient(
        token_url=f"{BASE_URL}/oauth2/v1/tokens/bearer",
        client_id="client",
        client_secret="secret",
        transport=httpx.ASGITransport(app=mock_qbo),
    )
    return TokenVault(database, oauth=oauth, cipher=cipher)


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def e2e_orchestrator(database, e2e_vault, mock_qbo, sleep):
    fetcher = ReportClient(e2e_vault, base_url=BASE_URL, transport=httpx.ASGITransport(app=mock_qbo))
    ingestor = ReportIngestor(fetcher, ReportWriter(database))
    return SyncOrchestrator(database, ingestor, report_types=list(ReportType), max_attempts=3, sleep=sleep)


async def test_sync_all_isolates_failing_account(database, make_connection, e2e_vault, e2e_orchestrator, mock_qbo, sleep):
    healthy = await make_connection(realm_id="9130355")
    broken = await make_connection(realm_id="unavailable-1", company_name="Down Clinic")
    await e2e_vault.authorize(healthy.id, "code-healthy")
    await e2e_vault.authorize(broken.id, "code-broken")
    revoked = await e2e_vault.get_valid_access_token(healthy.id)
    mock_qbo.state.access_tokens.discard(revoked)

    results = await e2e_orchestrator.sync_all("automatic", *JAN)

    by_realm = {r.realm_id: r for r in results}
    ok = by_realm["9130355"]
    assert ok.status is SyncStatus.COMPLETED
    assert [r.report_type for r in ok.reports] == list(ReportType)
    assert all(check.balanced for report in ok.reports for check in report.checks)
    tb = ok.reports[0]
    assert (tb.columns_count, tb.rows_count, tb.summaries_count) == (6, 12, 4)

    failed = by_realm["unavailable-1"]
    assert failed.status is SyncStatus.FAILED
    assert failed.error == "Failed to sync TrialBalance report"
    assert failed.attempts == 3
    assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]

    async with database.session() as db:
        repo = ReportRepository(db)
        for report_type in ReportType:
            assert len(await repo.list_documents("9130355", report_type)) == 1
            assert await repo.list_documents("unavailable-1", report_type) == []
        logs = await SyncLogRepository(db).recent(healthy.id) + await SyncLogRepository(db).recent(broken.id)
    assert sorted(log.status for log in logs) == ["completed", "failed"]
    assert all(log.initiated_by == "automatic" for log in logs)


async def test_stored_kpi_matches_mock_reports(database, make_connection, e2e_vault, e2e_orchestrator):
    account = await make_connection(realm_id="9130355")
    await e2e_vault.authorize(account.id, "code")

    result = await e2e_orchestrator.sync_account(account, "manual", *JAN)

    assert result.status is SyncStatus.COMPLETED
    async with database.session() as db:
        repo = ReportRepository(db)
        cash_flow = await repo.latest("9130355", ReportType.CASH_FLOW)
        balance_sheet = await repo.latest("9130355", ReportType.BALANCE_SHEET)
    assert cash_flow.kpi["totals"]["ending_cash"] == 11400.0
    assert balance_sheet.kpi["totals"]["total_assets"] == 17100.0
    assert cash_flow.start_date == date(2024, 2, 1)
