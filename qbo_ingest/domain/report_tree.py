"""
Typed view of a QuickBooks report payload.

The API mixes Section, Data, Header and Summary nodes ad hoc. Payloads are
parsed once into a closed set of node types (`Section` | `DataRow`) so each
report walker dispatches on type instead of probing dict keys.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from qbo_ingest.domain.exceptions import MappingError
from qbo_ingest.domain.models import ReportHeader
from qbo_ingest.utils.date_utils import parse_date_only, parse_timestamp


@dataclass(frozen=True)
class Cell:
    """One ColData entry"""

    value: str = ""
    id: Optional[str] = None


@dataclass(frozen=True)
class DataRow:
    """Leaf row: a label cell followed by one value cell per column"""

    cells: Tuple[Cell, ...]
    group: Optional[str] = None

    @property
    def label(self) -> Cell:
        return self.cells[0] if self.cells else Cell()


@dataclass(frozen=True)
class Section:
    """Grouping row with optional header cells, children and summary cells"""

    header: Tuple[Cell, ...] = ()
    rows: Tuple["Node", ...] = ()
    summary: Tuple[Cell, ...] = ()
    group: Optional[str] = None

    @property
    def label(self) -> str:
        return self.header[0].value if self.header else ""


Node = Union[Section, DataRow]


@dataclass(frozen=True)
class ColumnDef:
    """Entry of Columns.Column; month columns nest Debit/Credit sub-columns"""

    title: str
    col_type: str
    children: Tuple["ColumnDef", ...] = ()
    metadata: Dict[str, str] = field(default_factory=dict)
    col_id: Optional[str] = None


@dataclass(frozen=True)
class ReportTree:
    header: ReportHeader
    columns: Tuple[ColumnDef, ...]
    rows: Tuple[Node, ...]


def unwrap_report(payload: Any) -> Dict[str, Any]:
    """Strip the optional QueryResponse / Report envelopes"""
    if not isinstance(payload, dict):
        raise MappingError(f"Report payload must be an object, got {type(payload).__name__}")
    report = payload.get("QueryResponse", payload)
    report = report.get("Report", report) if isinstance(report, dict) else report
    if not isinstance(report, dict):
        raise MappingError("Report envelope is not an object")
    return report


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _parse_cells(node: Any, where: str) -> Tuple[Cell, ...]:
    if node is None:
        return ()
    if not isinstance(node, dict):
        raise MappingError(f"{where} must be an object")
    cells = []
    for raw in _as_list(node.get("ColData")):
        if not isinstance(raw, dict):
            raise MappingError(f"{where}.ColData entries must be objects")
        value = raw.get("value")
        raw_id = raw.get("id")
        cells.append(
            Cell(
                value="" if value is None else str(value),
                id=str(raw_id) if raw_id not in (None, "") else None,
            )
        )
    return tuple(cells)


def parse_node(raw: Any) -> Node:
    if not isinstance(raw, dict):
        raise MappingError(f"Row must be an object, got {type(raw).__name__}")

    row_type = raw.get("type")
    group = raw.get("group") or None

    if row_type == "Data" or (row_type is None and "ColData" in raw):
        return DataRow(cells=_parse_cells(raw, "Data"), group=group)

    if row_type == "Section" or (row_type is None and ("Header" in raw or "Rows" in raw or "Summary" in raw)):
        children = raw.get("Rows") or {}
        if not isinstance(children, dict):
            raise MappingError("Section.Rows must be an object")
        return Section(
            header=_parse_cells(raw.get("Header"), "Section.Header"),
            rows=tuple(parse_node(child) for child in _as_list(children.get("Row"))),
            summary=_parse_cells(raw.get("Summary"), "Section.Summary"),
            group=group,
        )

    raise MappingError(f"Unknown row type: {row_type!r}")


def parse_column(raw: Any) -> ColumnDef:
    if not isinstance(raw, dict):
        raise MappingError("Column must be an object")
    metadata = {
        str(item.get("Name")): str(item.get("Value"))
        for item in _as_list(raw.get("MetaData"))
        if isinstance(item, dict) and item.get("Name")
    }
    nested = raw.get("Columns")
    children = nested.get("Column") if isinstance(nested, dict) else raw.get("ColData")
    return ColumnDef(
        title=raw.get("ColTitle") or "",
        col_type=raw.get("ColType") or "",
        children=tuple(parse_column(child) for child in _as_list(children)),
        metadata=metadata,
        col_id=str(raw["id"]) if raw.get("id") not in (None, "") else raw.get("ColId"),
    )


def parse_header(
    raw: Any,
    default_name: str,
    fallback_start: date | None = None,
    fallback_end: date | None = None,
) -> ReportHeader:
    raw = raw if isinstance(raw, dict) else {}
    options = {
        str(item.get("Name")): item.get("Value")
        for item in _as_list(raw.get("Option"))
        if isinstance(item, dict)
    }
    start = parse_date_only(raw.get("StartPeriod")) or fallback_start
    end = parse_date_only(raw.get("EndPeriod")) or fallback_end
    if start and end and start > end:
        raise MappingError(f"Report period start {start} is after end {end}")

    return ReportHeader(
        report_name=raw.get("ReportName") or default_name,
        report_basis=raw.get("ReportBasis"),
        start_period=start,
        end_period=end,
        currency=raw.get("Currency") or "USD",
        generated_at=parse_timestamp(raw.get("Time")) or datetime.now(timezone.utc),
        summarize_columns_by=raw.get("SummarizeColumnsBy"),
        accounting_standard=options.get("AccountingStandard"),
    )


def parse_report(
    payload: Any,
    default_name: str,
    fallback_start: date | None = None,
    fallback_end: date | None = None,
) -> ReportTree:
    """Parse a raw report payload; raises MappingError on malformed structure"""
    report = unwrap_report(payload)

    rows_node = report.get("Rows") or {}
    columns_node = report.get("Columns") or {}
    if not isinstance(rows_node, dict) or not isinstance(columns_node, dict):
        raise MappingError("Rows and Columns must be objects")

    return ReportTree(
        header=parse_header(report.get("Header"), default_name, fallback_start, fallback_end),
        columns=tuple(parse_column(col) for col in _as_list(columns_node.get("Column"))),
        rows=tuple(parse_node(row) for row in _as_list(rows_node.get("Row"))),
    )
