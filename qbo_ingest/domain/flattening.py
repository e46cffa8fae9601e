"""
Report flatteners - turn QuickBooks report trees into flat lines and summaries.

All report types share one depth-first, pre-order walk:

- a Section extends the breadcrumb with its header label, emits its Summary
  as a ReportSummary, then visits its children;
- a Data row yields one ReportLine per non-empty, non-zero value cell,
  named by its leading label cell.

Report-specific walkers only decide how sections are classified and how a
value cell becomes a line.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Dict, List, Optional, Tuple, Type

from qbo_ingest.domain.columns import ColumnRegistry
from qbo_ingest.domain.exceptions import MappingError
from qbo_ingest.domain.models import FlattenedReport, ReportLine, ReportSummary, ReportType
from qbo_ingest.domain.report_tree import Cell, DataRow, ReportTree, Section, parse_report
from qbo_ingest.domain.taxonomy import KpiTaxonomy, account_category
from qbo_ingest.utils.amount_utils import parse_amount

logger = logging.getLogger(__name__)

PATH_DELIMITER = " > "


@dataclass(frozen=True)
class WalkContext:
    """Inherited state for the section currently being visited"""

    path: Tuple[str, ...] = ()
    group: Optional[str] = None
    section: Optional[str] = None
    subsection: Optional[str] = None
    account_type: Optional[str] = None

    @property
    def breadcrumb(self) -> str:
        return PATH_DELIMITER.join(self.path)


class ReportFlattener:
    """Shared walk; subclasses override the classification hooks"""

    report_type: ReportType

    def __init__(
        self,
        realm_id: str,
        fallback_start: date | None = None,
        fallback_end: date | None = None,
    ):
        self.realm_id = realm_id
        self.fallback_start = fallback_start
        self.fallback_end = fallback_end
        self.lines: List[ReportLine] = []
        self.summaries: List[ReportSummary] = []
        self.skipped_cells = 0

    def flatten(self, payload: dict) -> FlattenedReport:
        tree = parse_report(payload, self.report_type.value, self.fallback_start, self.fallback_end)
        self.lines, self.summaries, self.skipped_cells = [], [], 0
        self.prepare(tree)

        root = WalkContext()
        for node in tree.rows:
            self._visit(node, root)

        logger.debug(
            "Report flattened",
            extra={
                "report_type": self.report_type.value,
                "realm_id": self.realm_id,
                "lines": len(self.lines),
                "summaries": len(self.summaries),
                "skipped_cells": self.skipped_cells,
            },
        )
        return FlattenedReport(
            report_type=self.report_type,
            realm_id=self.realm_id,
            header=tree.header,
            lines=self.lines,
            summaries=self.summaries,
            columns=self.columns(),
            raw=payload,
        )

    # Walk

    def _visit(self, node, ctx: WalkContext) -> None:
        if isinstance(node, Section):
            self._visit_section(node, ctx)
        elif isinstance(node, DataRow):
            self._visit_data(node, ctx)
        else:
            raise MappingError(f"Unsupported node {type(node).__name__}")

    def _visit_section(self, section: Section, parent: WalkContext) -> None:
        ctx = parent
        if section.label:
            ctx = replace(parent, path=parent.path + (section.label,))
        ctx = self.enter_section(section, ctx, parent)

        if len(section.header) > 1:
            self._emit_cells(section.header, ctx, group=None)

        if len(section.summary) > 1:
            self.summaries.extend(self.summaries_for(section, ctx))

        for child in section.rows:
            self._visit(child, ctx)

    def _visit_data(self, row: DataRow, ctx: WalkContext) -> None:
        self._emit_cells(row.cells, ctx, group=row.group)

    def _emit_cells(self, cells: Tuple[Cell, ...], ctx: WalkContext, group: Optional[str]) -> None:
        if not cells:
            return
        label = cells[0]
        name = label.value.strip()
        for position, cell in enumerate(cells[1:], start=1):
            amount = parse_amount(cell.value)
            if amount is None:
                if cell.value.strip():
                    self.skipped_cells += 1
                continue
            if amount == 0:
                continue
            if not name:
                self.skipped_cells += 1
                continue
            line = self.make_line(ctx, name, label.id, position, amount, group)
            if line is not None:
                self.lines.append(line)

    # Hooks

    def prepare(self, tree: ReportTree) -> None:
        pass

    def columns(self) -> list:
        return []

    def enter_section(self, section: Section, ctx: WalkContext, parent: WalkContext) -> WalkContext:
        """Context for a section's children; `ctx` already carries the extended path"""
        if parent.group is None and section.group:
            ctx = replace(ctx, group=section.group)
        if not parent.path and section.label:
            ctx = replace(ctx, section=section.label)
        elif len(parent.path) == 1 and section.label:
            ctx = replace(ctx, subsection=section.label)
        return ctx

    def make_line(
        self,
        ctx: WalkContext,
        name: str,
        account_id: Optional[str],
        position: int,
        amount: float,
        group: Optional[str],
    ) -> Optional[ReportLine]:
        return ReportLine(
            path=ctx.breadcrumb,
            account_name=name,
            account_id=account_id,
            amount=amount,
            group=group or ctx.group,
            section=ctx.section,
            subsection=ctx.subsection,
            account_type=ctx.account_type,
        )

    def summaries_for(self, section: Section, ctx: WalkContext) -> List[ReportSummary]:
        amount = parse_amount(section.summary[1].value)
        if amount is None:
            return []
        return [
            ReportSummary(
                path=ctx.breadcrumb,
                label=section.summary[0].value,
                amount=amount,
                group=section.group or ctx.group,
            )
        ]


class ProfitAndLossFlattener(ReportFlattener):
    report_type = ReportType.PROFIT_AND_LOSS

    EXPENSE_GROUPS = ("Expenses", "OtherExpenses")
    LABEL_GROUPS = (
        ("other income", "OtherIncome"),
        ("other expense", "OtherExpenses"),
        ("cost of goods sold", "COGS"),
        ("income", "Income"),
        ("expense", "Expenses"),
    )

    def __init__(self, *args, taxonomy: Optional[KpiTaxonomy] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.taxonomy = taxonomy or KpiTaxonomy.default()

    def enter_section(self, section: Section, ctx: WalkContext, parent: WalkContext) -> WalkContext:
        ctx = super().enter_section(section, ctx, parent)
        if ctx.group is None:
            label = section.label.lower()
            for needle, group in self.LABEL_GROUPS:
                if needle in label:
                    ctx = replace(ctx, group=group)
                    break
        return ctx

    def make_line(
        self,
        ctx: WalkContext,
        name: str,
        account_id: Optional[str],
        position: int,
        amount: float,
        group: Optional[str],
    ) -> Optional[ReportLine]:
        line = super().make_line(ctx, name, account_id, position, amount, group)
        if line.group in self.EXPENSE_GROUPS:
            line.category = self.taxonomy.category_for(name)
        return line


class BalanceSheetFlattener(ReportFlattener):
    report_type = ReportType.BALANCE_SHEET

    SECTION_LABELS = ("ASSETS", "LIABILITIES AND EQUITY", "Liabilities", "Equity")

    def enter_section(self, section: Section, ctx: WalkContext, parent: WalkContext) -> WalkContext:
        label = section.label
        group = parent.group or section.group
        if label in self.SECTION_LABELS:
            return replace(ctx, group=group, section=label)
        if "Assets" in label or "Liabilities" in label:
            return replace(ctx, group=group, subsection=label)
        if label:
            return replace(ctx, group=group, account_type=label)
        return replace(ctx, group=group)


def normalize_cash_flow_group(raw_group: Optional[str], label: Optional[str]) -> Optional[str]:
    """Map a QuickBooks group tag or header label onto a cash-flow bucket"""
    g = (raw_group or "").lower()
    h = (label or "").lower()
    if "operating" in g or "operating" in h:
        return "Operating"
    if "investing" in g or "investing" in h:
        return "Investing"
    if "financing" in g or "financing" in h:
        return "Financing"
    if "cashincrease" in g or "net cash" in h:
        return "NetCash"
    if "beginningcash" in g or "cash at beginning" in h:
        return "BeginningCash"
    if "endingcash" in g or "cash at end" in h:
        return "EndingCash"
    return None


class CashFlowFlattener(ReportFlattener):
    report_type = ReportType.CASH_FLOW

    def enter_section(self, section: Section, ctx: WalkContext, parent: WalkContext) -> WalkContext:
        ctx = super().enter_section(section, ctx, parent)
        label = section.label if not parent.path else None
        group = normalize_cash_flow_group(section.group, label)
        return replace(ctx, group=group or parent.group)

    def make_line(
        self,
        ctx: WalkContext,
        name: str,
        account_id: Optional[str],
        position: int,
        amount: float,
        group: Optional[str],
    ) -> Optional[ReportLine]:
        normalized = normalize_cash_flow_group(group, None) if group else None
        return super().make_line(ctx, name, account_id, position, amount, normalized)

    def summaries_for(self, section: Section, ctx: WalkContext) -> List[ReportSummary]:
        amount = parse_amount(section.summary[1].value)
        if amount is None:
            return []
        label = section.summary[0].value
        # Nested labels mention "net cash" in passing; only trust them at the top
        top_level = len(ctx.path) <= 1
        group = normalize_cash_flow_group(section.group, label if top_level else None)
        return [
            ReportSummary(
                path=ctx.breadcrumb,
                label=label,
                amount=amount,
                group=group or ctx.group,
            )
        ]


class TrialBalanceFlattener(ReportFlattener):
    report_type = ReportType.TRIAL_BALANCE

    def prepare(self, tree: ReportTree) -> None:
        self.registry = ColumnRegistry.from_definitions(tree.columns)

    def columns(self) -> list:
        return self.registry.columns

    def make_line(
        self,
        ctx: WalkContext,
        name: str,
        account_id: Optional[str],
        position: int,
        amount: float,
        group: Optional[str],
    ) -> Optional[ReportLine]:
        column = self.registry.resolve(position)
        line = super().make_line(ctx, name, account_id, position, amount, group)
        line.column_key = column.key
        line.polarity = column.polarity
        line.category = account_category(name)
        return line

    def summaries_for(self, section: Section, ctx: WalkContext) -> List[ReportSummary]:
        summaries = []
        label = section.summary[0].value
        for position, cell in enumerate(section.summary[1:], start=1):
            amount = parse_amount(cell.value)
            if amount is None:
                continue
            column = self.registry.resolve(position)
            summaries.append(
                ReportSummary(
                    path=ctx.breadcrumb,
                    label=label,
                    amount=amount,
                    group=column.polarity or column.title,
                )
            )
        return summaries


FLATTENERS: Dict[ReportType, Type[ReportFlattener]] = {
    ReportType.TRIAL_BALANCE: TrialBalanceFlattener,
    ReportType.PROFIT_AND_LOSS: ProfitAndLossFlattener,
    ReportType.BALANCE_SHEET: BalanceSheetFlattener,
    ReportType.CASH_FLOW: CashFlowFlattener,
}


def flatten_report(
    report_type: ReportType,
    payload: dict,
    realm_id: str,
    fallback_start: date | None = None,
    fallback_end: date | None = None,
    taxonomy: Optional[KpiTaxonomy] = None,
) -> FlattenedReport:
    """Flatten one raw report payload with the walker for its type"""
    flattener_cls = FLATTENERS[report_type]
    kwargs = {"taxonomy": taxonomy} if flattener_cls is ProfitAndLossFlattener else {}
    flattener = flattener_cls(realm_id, fallback_start, fallback_end, **kwargs)
    return flattener.flatten(payload)
