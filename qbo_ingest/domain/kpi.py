"""
KPI aggregation - roll flattened lines up into the dashboard documents.

Each report type has its own KPI shape. All functions are pure: they take
flattened lines and summaries and return plain dicts that are stored as
JSON next to the report header.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from qbo_ingest.domain.models import CrossCheck, ReportLine, ReportSummary, ReportType
from qbo_ingest.domain.taxonomy import MISCELLANEOUS, MISCELLANEOUS_TOTAL, KpiTaxonomy

logger = logging.getLogger(__name__)

PNL_EXPENSE_GROUPS = ("Expenses", "OtherExpenses")
CASH_FLOW_ACTIVITIES = ("Operating", "Investing", "Financing")
CASH_FLOW_BALANCES = {
    "NetCash": "net_cash_flow",
    "BeginningCash": "beginning_cash",
    "EndingCash": "ending_cash",
}


def _add(bucket: Dict[str, Any], key: str, amount: float) -> None:
    bucket[key] = round((bucket.get(key) or 0.0) + amount, 2)


def category_total(node: Dict[str, Any], total_key: str) -> Optional[float]:
    """Sum of a category's account slots, excluding its own total key; None when zero"""
    total = sum(
        value
        for key, value in node.items()
        if key != total_key and isinstance(value, (int, float))
    )
    total = round(total, 2)
    return total or None


def _fill_totals(tree: Dict[str, Any], taxonomy: KpiTaxonomy) -> None:
    for path, total_key in taxonomy.total_keys().items():
        node = tree
        for part in path:
            node = node[part]
        node[total_key] = category_total(node, total_key)
    misc = tree[MISCELLANEOUS]
    misc[MISCELLANEOUS_TOTAL] = category_total(misc, MISCELLANEOUS_TOTAL)


def profit_and_loss_kpi(lines: Iterable[ReportLine], taxonomy: Optional[KpiTaxonomy] = None) -> Dict[str, Any]:
    """
    Map expense lines onto the taxonomy tree.

    Accounts the taxonomy does not know land under Miscellaneous by their own
    name. Every category total is recomputed from its slots.
    """
    taxonomy = taxonomy or KpiTaxonomy.default()
    tree = taxonomy.empty_tree()

    for line in lines:
        if line.group not in PNL_EXPENSE_GROUPS:
            continue
        slot = taxonomy.slot_for(line.account_name)
        if slot is None:
            _add(tree[MISCELLANEOUS], line.account_name, line.amount)
            continue
        path, account = slot
        node = tree
        for part in path:
            node = node[part]
        _add(node, account, line.amount)

    _fill_totals(tree, taxonomy)
    return tree


def balance_sheet_kpi(lines: Iterable[ReportLine]) -> Dict[str, Any]:
    kpi: Dict[str, Any] = {
        "sections": {
            "assets": {"current_assets": {}, "fixed_assets": {}, "other_assets": {}, "total": 0.0},
            "liabilities": {"current_liabilities": {}, "long_term_liabilities": {}, "total": 0.0},
            "equity": {"line_items": {}, "total": 0.0},
        },
        "totals": {"total_assets": 0.0, "total_liabilities_and_equity": 0.0},
    }
    sections = kpi["sections"]
    totals = kpi["totals"]

    for line in lines:
        section = (line.section or "").lower()
        subsection = (line.subsection or "").lower()
        if "assets" in section:
            if "current" in subsection:
                bucket = sections["assets"]["current_assets"]
            elif "fixed" in subsection:
                bucket = sections["assets"]["fixed_assets"]
            else:
                bucket = sections["assets"]["other_assets"]
            _add(bucket, line.account_name, line.amount)
            _add(sections["assets"], "total", line.amount)
            _add(totals, "total_assets", line.amount)
        elif "liabilities" in section:
            if "current" in subsection:
                bucket = sections["liabilities"]["current_liabilities"]
            else:
                bucket = sections["liabilities"]["long_term_liabilities"]
            _add(bucket, line.account_name, line.amount)
            _add(sections["liabilities"], "total", line.amount)
            _add(totals, "total_liabilities_and_equity", line.amount)
        elif "equity" in section:
            _add(sections["equity"]["line_items"], line.account_name, line.amount)
            _add(sections["equity"], "total", line.amount)
            _add(totals, "total_liabilities_and_equity", line.amount)

    return kpi


def cash_flow_kpi(lines: Iterable[ReportLine], summaries: Iterable[ReportSummary] = ()) -> Dict[str, Any]:
    kpi: Dict[str, Any] = {
        "activities": {"operating": {}, "investing": {}, "financing": {}},
        "totals": {
            "operating": 0.0,
            "investing": 0.0,
            "financing": 0.0,
            "net_cash_flow": 0.0,
            "beginning_cash": 0.0,
            "ending_cash": 0.0,
        },
    }
    activities = kpi["activities"]
    totals = kpi["totals"]

    for line in lines:
        if line.group in CASH_FLOW_ACTIVITIES:
            key = line.group.lower()
            _add(activities[key], line.account_name, line.amount)
            _add(totals, key, line.amount)
        elif line.group in CASH_FLOW_BALANCES:
            totals[CASH_FLOW_BALANCES[line.group]] = line.amount

    # Net change and cash balances are reported as summary-only sections
    for summary in summaries:
        if summary.group in CASH_FLOW_BALANCES and " > " not in summary.path:
            totals[CASH_FLOW_BALANCES[summary.group]] = summary.amount

    return kpi


def trial_balance_kpi(lines: Iterable[ReportLine]) -> Dict[str, Any]:
    categories: Dict[str, Dict[str, float]] = {}
    debit = credit = 0.0

    for line in lines:
        if line.polarity not in ("Debit", "Credit"):
            continue
        bucket = categories.setdefault(line.category or "Other", {"debit": 0.0, "credit": 0.0})
        if line.polarity == "Debit":
            _add(bucket, "debit", line.amount)
            debit += line.amount
        else:
            _add(bucket, "credit", line.amount)
            credit += line.amount

    return {
        "categories": categories,
        "totals": {
            "debit": round(debit, 2),
            "credit": round(credit, 2),
            "difference": round(debit - credit, 2),
        },
    }


def aggregate(
    report_type: ReportType,
    lines: List[ReportLine],
    summaries: List[ReportSummary],
    taxonomy: Optional[KpiTaxonomy] = None,
) -> Dict[str, Any]:
    """KPI document for one flattened report"""
    if report_type is ReportType.PROFIT_AND_LOSS:
        body = profit_and_loss_kpi(lines, taxonomy)
    elif report_type is ReportType.BALANCE_SHEET:
        body = balance_sheet_kpi(lines)
    elif report_type is ReportType.CASH_FLOW:
        body = cash_flow_kpi(lines, summaries)
    else:
        body = trial_balance_kpi(lines)

    return {
        "report_type": report_type.value,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        **body,
    }


# Cross-checks


def _top_level(summaries: Iterable[ReportSummary], group: str) -> Optional[float]:
    """Amount of the outermost summary tagged with `group`"""
    for summary in summaries:
        if summary.group == group and " > " not in summary.path:
            return summary.amount
    return None


def _sum(lines: Iterable[ReportLine], *groups: str) -> float:
    return round(sum(line.amount for line in lines if line.group in groups), 2)


def cross_checks(
    report_type: ReportType,
    lines: List[ReportLine],
    summaries: List[ReportSummary],
    kpi: Optional[Dict[str, Any]] = None,
) -> List[CrossCheck]:
    """Compare locally recomputed totals with the totals QuickBooks reported"""
    if report_type is ReportType.PROFIT_AND_LOSS:
        net = (
            _sum(lines, "Income")
            - _sum(lines, "COGS")
            - _sum(lines, "Expenses")
            + _sum(lines, "OtherIncome")
            - _sum(lines, "OtherExpenses")
        )
        return [CrossCheck("net_income", round(net, 2), _top_level(summaries, "NetIncome"))]

    if report_type is ReportType.BALANCE_SHEET:
        kpi = kpi or balance_sheet_kpi(lines)
        totals = kpi["totals"]
        return [
            CrossCheck(
                "assets_vs_liabilities_and_equity",
                totals["total_assets"],
                totals["total_liabilities_and_equity"],
            )
        ]

    if report_type is ReportType.CASH_FLOW:
        return [
            CrossCheck(f"{group.lower()}_activities", _sum(lines, group), _top_level(summaries, group))
            for group in CASH_FLOW_ACTIVITIES
        ]

    kpi = kpi or trial_balance_kpi(lines)
    return [CrossCheck("debits_vs_credits", kpi["totals"]["debit"], kpi["totals"]["credit"])]


def log_unbalanced(report_type: ReportType, realm_id: str, checks: Iterable[CrossCheck]) -> None:
    for check in checks:
        if not check.balanced:
            logger.warning(
                "Report totals do not reconcile",
                extra={
                    "report_type": report_type.value,
                    "realm_id": realm_id,
                    "check": check.name,
                    "calculated": check.calculated,
                    "reported": check.reported,
                },
            )
