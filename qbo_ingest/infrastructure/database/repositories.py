"""Data access layer for connections, tokens, sync logs and report documents"""

import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from qbo_ingest.infrastructure.database.models import REPORT_TABLES, QBOConnection, QBOSyncLog, QBOToken
from qbo_ingest.domain.models import AccountSyncResult, ReportType


def as_uuid(value) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class ConnectionRepository:
    """Repository for connected QuickBooks companies"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        realm_id: str,
        organization_id: str | None = None,
        company_name: str | None = None,
    ) -> QBOConnection:
        db_connection = QBOConnection(
            realm_id=realm_id,
            organization_id=organization_id,
            company_name=company_name,
            is_active=True,
        )
        self.db.add(db_connection)
        await self.db.flush()  # Get ID without committing
        return db_connection

    async def get(self, connection_id) -> Optional[QBOConnection]:
        key = as_uuid(connection_id)
        if key is None:
            return None
        return await self.db.get(QBOConnection, key)

    async def get_by_realm(self, realm_id: str) -> Optional[QBOConnection]:
        result = await self.db.execute(select(QBOConnection).where(QBOConnection.realm_id == realm_id))
        return result.scalars().first()

    async def list_active(self) -> List[QBOConnection]:
        """Active connections, oldest first"""
        result = await self.db.execute(
            select(QBOConnection)
            .where(QBOConnection.is_active.is_(True))
            .order_by(QBOConnection.created_at, QBOConnection.realm_id)
        )
        return list(result.scalars().all())

    async def mark_synced(self, connection_id, synced_at: datetime) -> None:
        await self.db.execute(
            update(QBOConnection)
            .where(QBOConnection.id == as_uuid(connection_id))
            .values(last_synced_at=synced_at)
        )


class TokenRepository:
    """Repository for encrypted OAuth token records"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def current(self, connection_id) -> Optional[QBOToken]:
        """Newest non-revoked token record"""
        result = await self.db.execute(
            select(QBOToken)
            .where(QBOToken.connection_id == as_uuid(connection_id), QBOToken.revoked.is_(False))
            .order_by(QBOToken.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def add(
        self,
        connection_id,
        access_token_encrypted: str,
        refresh_token_encrypted: str,
        access_expires_at: datetime,
        refresh_expires_at: datetime | None = None,
    ) -> QBOToken:
        """Store a fresh token pair and revoke every older record"""
        await self.revoke_all(connection_id)
        db_token = QBOToken(
            connection_id=as_uuid(connection_id),
            access_token_encrypted=access_token_encrypted,
            refresh_token_encrypted=refresh_token_encrypted,
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
            revoked=False,
            version=1,
        )
        self.db.add(db_token)
        await self.db.flush()
        return db_token

    async def rotate(
        self,
        token_id: int,
        expected_version: int,
        access_token_encrypted: str,
        refresh_token_encrypted: str,
        access_expires_at: datetime,
        refresh_expires_at: datetime | None = None,
    ) -> bool:
        """
        Compare-and-swap update of a token record.

        Returns False when another writer already rotated the record, so the
        caller can re-read instead of overwriting a newer refresh token.
        """
        result = await self.db.execute(
            update(QBOToken)
            .where(
                QBOToken.id == token_id,
                QBOToken.version == expected_version,
                QBOToken.revoked.is_(False),
            )
            .values(
                access_token_encrypted=access_token_encrypted,
                refresh_token_encrypted=refresh_token_encrypted,
                access_expires_at=access_expires_at,
                refresh_expires_at=refresh_expires_at,
                version=expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def revoke_all(self, connection_id) -> None:
        await self.db.execute(
            update(QBOToken)
            .where(QBOToken.connection_id == as_uuid(connection_id), QBOToken.revoked.is_(False))
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )


class SyncLogRepository:
    """Repository for sync outcome records"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, result: AccountSyncResult, started_at: datetime, finished_at: datetime) -> QBOSyncLog:
        db_log = QBOSyncLog(
            connection_id=str(result.connection_id),
            realm_id=result.realm_id,
            initiated_by=result.initiated_by,
            status=result.status.value,
            report_types=[report.report_type.value for report in result.reports],
            error=result.error,
            attempts=result.attempts,
            started_at=started_at,
            finished_at=finished_at,
        )
        self.db.add(db_log)
        await self.db.flush()
        return db_log

    async def recent(self, connection_id: str, limit: int = 10) -> List[QBOSyncLog]:
        result = await self.db.execute(
            select(QBOSyncLog)
            .where(QBOSyncLog.connection_id == str(connection_id))
            .order_by(QBOSyncLog.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


class ReportRepository:
    """Read side for stored report documents"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_documents(self, realm_id: str, report_type: ReportType, limit: int = 10) -> list:
        """Documents for a realm and type, newest first"""
        model = REPORT_TABLES[report_type.value].report
        result = await self.db.execute(
            select(model)
            .where(model.realm_id == realm_id)
            .order_by(model.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def latest(self, realm_id: str, report_type: ReportType):
        documents = await self.list_documents(realm_id, report_type, limit=1)
        return documents[0] if documents else None

    async def get(self, report_type: ReportType, report_id: int):
        return await self.db.get(REPORT_TABLES[report_type.value].report, report_id)

    async def lines(self, report_type: ReportType, report_id: int) -> list:
        model = REPORT_TABLES[report_type.value].line
        result = await self.db.execute(select(model).where(model.report_id == report_id).order_by(model.id))
        return list(result.scalars().all())

    async def summaries(self, report_type: ReportType, report_id: int) -> list:
        model = REPORT_TABLES[report_type.value].summary
        result = await self.db.execute(select(model).where(model.report_id == report_id).order_by(model.id))
        return list(result.scalars().all())

    async def columns(self, report_id: int) -> list:
        model = REPORT_TABLES[ReportType.TRIAL_BALANCE.value].column
        result = await self.db.execute(
            select(model).where(model.report_id == report_id).order_by(model.col_order)
        )
        return list(result.scalars().all())
