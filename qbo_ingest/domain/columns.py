"""Column registry for trial balance reports"""

from datetime import date
from typing import Dict, Iterable, List, Optional

from qbo_ingest.domain.models import ColumnKey, ReportColumn
from qbo_ingest.domain.report_tree import ColumnDef
from qbo_ingest.utils.date_utils import parse_date_only

DEFAULT_COL_TYPE = "Money"
LABEL_COL_TYPE = "Account"  # leading account-name column carries no amounts


class ColumnRegistry:
    """
    Ordered registry of trial balance columns for one document.

    Columns are keyed by (title, type, parent title). Order indexes are
    assigned the first time a key is seen, so every line can be tied to a
    column before anything is persisted. Cell positions in data rows are
    bound to columns by the same positional walk QuickBooks uses for
    Columns.Column.
    """

    def __init__(self) -> None:
        self._by_key: Dict[ColumnKey, ReportColumn] = {}
        self._by_position: Dict[int, ReportColumn] = {}

    @classmethod
    def from_definitions(cls, definitions: Iterable[ColumnDef]) -> "ColumnRegistry":
        registry = cls()
        position = 0
        for definition in definitions:
            if definition.col_type == LABEL_COL_TYPE:
                position += 1
                continue
            start = parse_date_only(definition.metadata.get("StartDate"))
            end = parse_date_only(definition.metadata.get("EndDate"))
            column = registry.register(
                title=definition.title,
                col_type=definition.col_type or DEFAULT_COL_TYPE,
                period_start=start,
                period_end=end,
                col_id=definition.col_id,
            )
            if not definition.children:
                registry.bind(position, column)
                position += 1
                continue
            # Month headers hold no cells themselves; their sub-columns take the positions
            for child in definition.children:
                registry.bind(
                    position,
                    registry.register(
                        title=child.title or definition.title,
                        col_type=child.col_type or definition.col_type or DEFAULT_COL_TYPE,
                        period_start=start,
                        period_end=end,
                        col_id=child.col_id,
                        parent=column,
                    ),
                )
                position += 1
        return registry

    def register(
        self,
        title: str,
        col_type: str,
        parent_title: Optional[str] = None,
        period_start: date | None = None,
        period_end: date | None = None,
        col_id: Optional[str] = None,
        parent: Optional[ReportColumn] = None,
    ) -> ReportColumn:
        """Return the column for this key, creating it with the next order index"""
        if parent is not None:
            parent_title = parent.title
        key = ColumnKey(title, col_type, parent_title)
        column = self._by_key.get(key)
        if column is None:
            column = ReportColumn(
                title=title,
                col_type=col_type,
                order=len(self._by_key),
                parent_title=parent_title,
                period_start=period_start,
                period_end=period_end,
                col_id=col_id,
                parent=parent.key if parent is not None else None,
            )
            self._by_key[key] = column
        return column

    def bind(self, position: int, column: ReportColumn) -> None:
        self._by_position[position] = column

    def column_at(self, position: int) -> Optional[ReportColumn]:
        return self._by_position.get(position)

    def resolve(self, position: int) -> ReportColumn:
        """
        Column for a data cell position.

        Positions the header never declared get a fallback column: cells come
        in Debit/Credit pairs after the label, so odd positions are debits.
        """
        column = self._by_position.get(position)
        if column is None:
            period = self.register(title=f"Period {(position - 1) // 2 + 1}", col_type=DEFAULT_COL_TYPE)
            column = self.register(
                title="Debit" if position % 2 == 1 else "Credit",
                col_type=DEFAULT_COL_TYPE,
                parent=period,
            )
            self.bind(position, column)
        return column

    @property
    def columns(self) -> List[ReportColumn]:
        return sorted(self._by_key.values(), key=lambda c: c.order)

    def __len__(self) -> int:
        return len(self._by_key)
