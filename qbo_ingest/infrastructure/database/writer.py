"""Transactional writer for flattened report documents"""

import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional
from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from qbo_ingest.config import settings
from qbo_ingest.domain.exceptions import PersistenceError
from qbo_ingest.domain.kpi import aggregate
from qbo_ingest.domain.models import (
    ColumnKey,
    FlattenedReport,
    ReportLine,
    ReportSummary,
    ReportType,
    SaveResult,
)
from qbo_ingest.domain.taxonomy import KpiTaxonomy
from qbo_ingest.infrastructure.database.models import REPORT_TABLES, ReportTables
from qbo_ingest.infrastructure.database.repositories import ReportRepository
from qbo_ingest.infrastructure.database.session import Database
from qbo_ingest.infrastructure.observability.metrics import lines_persisted_counter

logger = logging.getLogger(__name__)

# ReportLine attributes stored by each line table beyond the shared ones
LINE_EXTRAS = {
    ReportType.TRIAL_BALANCE: ("polarity", "category"),
    ReportType.PROFIT_AND_LOSS: ("category",),
    ReportType.BALANCE_SHEET: ("section", "subsection", "account_type"),
    ReportType.CASH_FLOW: (),
}


def batched(items: List[Dict[str, Any]], size: int) -> Iterator[List[Dict[str, Any]]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class ReportWriter:
    """Persists one report document per call inside a single transaction"""

    def __init__(
        self,
        database: Database,
        batch_size: int | None = None,
        replace_previous: bool | None = None,
    ):
        self.database = database
        self.batch_size = batch_size or settings.line_batch_size
        self.replace_previous = (
            settings.replace_previous_documents if replace_previous is None else replace_previous
        )

    async def save(self, report: FlattenedReport) -> SaveResult:
        """
        Write header, columns, lines and summaries.

        Columns are inserted (or reused) and flushed before any line that
        references them. Any failure rolls the whole document back.

        Raises:
            PersistenceError: Transaction failed; nothing was written
        """
        tables = REPORT_TABLES[report.report_type.value]
        async with self.database.session() as db:
            try:
                async with db.begin():
                    if self.replace_previous:
                        await self._delete_previous(db, tables, report)

                    document = tables.report(
                        realm_id=report.realm_id,
                        report_name=report.header.report_name,
                        report_basis=report.header.report_basis,
                        start_date=report.header.start_period,
                        end_date=report.header.end_period,
                        currency=report.header.currency,
                        accounting_standard=report.header.accounting_standard,
                        generated_at=report.header.generated_at,
                        raw=report.raw,
                        kpi=report.kpi or None,
                    )
                    db.add(document)
                    await db.flush()
                    report_id = document.id

                    column_ids: Dict[ColumnKey, int] = {}
                    if tables.column is not None:
                        column_ids = await self._save_columns(db, tables, report_id, report)

                    rows = self._line_rows(report, report_id, column_ids)
                    for batch in batched(rows, self.batch_size):
                        await db.execute(insert(tables.line), batch)

                    summaries = self._summary_rows(report.summaries, report_id, report.realm_id)
                    for batch in batched(summaries, self.batch_size):
                        await db.execute(insert(tables.summary), batch)
            except SQLAlchemyError as e:
                logger.error(
                    "Report transaction rolled back",
                    extra={"realm_id": report.realm_id, "report_type": report.report_type.value, "error": str(e)},
                )
                raise PersistenceError(f"Failed to persist {report.report_type.value} report") from e

        lines_persisted_counter.labels(report_type=report.report_type.value).inc(len(rows))
        logger.info(
            "Report persisted",
            extra={
                "realm_id": report.realm_id,
                "report_type": report.report_type.value,
                "report_id": report_id,
                "columns": len(column_ids),
                "rows": len(rows),
                "summaries": len(summaries),
            },
        )
        return SaveResult(
            report_id=report_id,
            columns_count=len(column_ids),
            rows_count=len(rows),
            summaries_count=len(summaries),
        )

    async def _save_columns(
        self,
        db: AsyncSession,
        tables: ReportTables,
        report_id: int,
        report: FlattenedReport,
    ) -> Dict[ColumnKey, int]:
        """Find-or-create every column by (title, type, parent title), then link children to parents"""
        model = tables.column
        result = await db.execute(select(model).where(model.report_id == report_id))
        existing = {
            ColumnKey(col.col_title, col.col_type, col.parent_col_title): col
            for col in result.scalars().all()
        }

        created = []
        for column in report.columns:
            if column.key in existing:
                continue
            db_column = model(
                report_id=report_id,
                realm_id=report.realm_id,
                col_title=column.title,
                col_type=column.col_type,
                parent_col_title=column.parent_title,
                col_order=column.order,
                col_id=column.col_id,
                period_start=column.period_start,
                period_end=column.period_end,
            )
            db.add(db_column)
            existing[column.key] = db_column
            created.append(column)

        await db.flush()  # Column ids must exist before rows reference them

        for column in created:
            if column.parent in existing:
                existing[column.key].parent_col_id = existing[column.parent].id
        await db.flush()

        return {key: col.id for key, col in existing.items()}

    def _line_rows(
        self,
        report: FlattenedReport,
        report_id: int,
        column_ids: Dict[ColumnKey, int],
    ) -> List[Dict[str, Any]]:
        extras = LINE_EXTRAS[report.report_type]
        rows = []
        for line in report.lines:
            row = {
                "report_id": report_id,
                "realm_id": report.realm_id,
                "path": line.path,
                "account_name": line.account_name,
                "account_id": line.account_id,
                "amount": line.amount,
                "group_name": line.group,
            }
            for attr in extras:
                row[attr] = getattr(line, attr)
            if report.report_type is ReportType.TRIAL_BALANCE:
                column_id = column_ids.get(line.column_key)
                if column_id is None:
                    raise PersistenceError(
                        f"Line {line.account_name!r} references unknown column {line.column_key}"
                    )
                row["column_id"] = column_id
            rows.append(row)
        return rows

    @staticmethod
    def _summary_rows(summaries: Iterable[ReportSummary], report_id: int, realm_id: str) -> List[Dict[str, Any]]:
        return [
            {
                "report_id": report_id,
                "realm_id": realm_id,
                "path": summary.path,
                "label": summary.label,
                "amount": summary.amount,
                "group_name": summary.group,
            }
            for summary in summaries
        ]

    async def _delete_previous(self, db: AsyncSession, tables: ReportTables, report: FlattenedReport) -> None:
        """Drop earlier documents for the same realm, type and period"""
        model = tables.report
        result = await db.execute(
            select(model.id).where(
                model.realm_id == report.realm_id,
                model.start_date == report.header.start_period,
                model.end_date == report.header.end_period,
            )
        )
        previous = list(result.scalars().all())
        if not previous:
            return
        # Children first; SQLite only cascades with foreign keys enabled
        await db.execute(delete(tables.line).where(tables.line.report_id.in_(previous)))
        await db.execute(delete(tables.summary).where(tables.summary.report_id.in_(previous)))
        if tables.column is not None:
            await db.execute(delete(tables.column).where(tables.column.report_id.in_(previous)))
        await db.execute(delete(model).where(model.id.in_(previous)))
        logger.info(
            "Replaced previous documents",
            extra={"realm_id": report.realm_id, "report_type": report.report_type.value, "report_ids": previous},
        )

    async def recompute_kpi(
        self,
        report_type: ReportType,
        report_id: int,
        taxonomy: Optional[KpiTaxonomy] = None,
    ) -> Dict[str, Any]:
        """Re-aggregate a stored document and update only its KPI field"""
        tables = REPORT_TABLES[report_type.value]
        async with self.database.session() as db:
            try:
                async with db.begin():
                    repo = ReportRepository(db)
                    if await repo.get(report_type, report_id) is None:
                        raise PersistenceError(f"{report_type.value} report {report_id} not found")
                    lines = [self._to_line(report_type, row) for row in await repo.lines(report_type, report_id)]
                    summaries = [
                        ReportSummary(path=row.path, label=row.label, amount=row.amount, group=row.group_name)
                        for row in await repo.summaries(report_type, report_id)
                    ]
                    kpi = aggregate(report_type, lines, summaries, taxonomy)
                    await db.execute(update(tables.report).where(tables.report.id == report_id).values(kpi=kpi))
            except SQLAlchemyError as e:
                raise PersistenceError(f"Failed to recompute KPI for {report_type.value} report {report_id}") from e
        return kpi

    @staticmethod
    def _to_line(report_type: ReportType, row) -> ReportLine:
        line = ReportLine(
            path=row.path,
            account_name=row.account_name,
            amount=row.amount,
            account_id=row.account_id,
            group=row.group_name,
        )
        for attr in LINE_EXTRAS[report_type]:
            setattr(line, attr, getattr(row, attr))
        return line
