"""Scheduled trigger: sync every active connection once and exit"""

import asyncio
import logging
import sys
from typing import List

from qbo_ingest.config import settings
from qbo_ingest.domain.models import AccountSyncResult, SyncStatus
from qbo_ingest.infrastructure.database.session import Database
from qbo_ingest.infrastructure.observability.logging import setup_logging
from qbo_ingest.infrastructure.security.token_vault import TokenVault
from qbo_ingest.services.sync import create_orchestrator

INITIATED_BY = "automatic"


async def run(database: Database | None = None) -> List[AccountSyncResult]:
    database = database or Database()
    try:
        orchestrator = create_orchestrator(database, TokenVault(database))
        return await orchestrator.sync_all(initiated_by=INITIATED_BY)
    finally:
        await database.dispose()


def main() -> int:
    """Console entry point; exit status 1 when any account failed"""
    setup_logging(settings.log_level)
    results = asyncio.run(run())
    failed = [r for r in results if r.status is SyncStatus.FAILED]
    logging.info(
        "Scheduled sync finished",
        extra={"accounts": len(results), "failed": len(failed), "initiated_by": INITIATED_BY},
    )
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
