"""Domain models - pure Python dataclasses representing report ingestion entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional


class ReportType(str, Enum):
    """Report names as exposed by the QuickBooks reporting API"""

    TRIAL_BALANCE = "TrialBalance"
    PROFIT_AND_LOSS = "ProfitAndLoss"
    BALANCE_SHEET = "BalanceSheet"
    CASH_FLOW = "CashFlow"

    @property
    def summarize_column_by(self) -> str:
        return "Month" if self is ReportType.TRIAL_BALANCE else "Total"


class SyncStatus(str, Enum):
    """Per-account sync state"""

    PENDING = "pending"
    FETCHING = "fetching"
    MAPPING = "mapping"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ConnectedAccount:
    """A QuickBooks company connected to the dashboard"""

    id: str
    realm_id: str
    organization_id: Optional[str] = None
    company_name: Optional[str] = None


@dataclass
class TokenPair:
    """Plaintext tokens as returned by the token endpoint; never persisted as-is"""

    access_token: str
    refresh_token: str
    expires_in: int = 3600
    refresh_expires_in: Optional[int] = None


@dataclass
class ReportHeader:
    """Report metadata taken from the payload Header node"""

    report_name: str
    report_basis: Optional[str]
    start_period: Optional[date]
    end_period: Optional[date]
    currency: Optional[str]
    generated_at: datetime
    summarize_columns_by: Optional[str] = None
    accounting_standard: Optional[str] = None


class ColumnKey(NamedTuple):
    """Natural key of a trial balance column within one document"""

    title: str
    col_type: str
    parent_title: Optional[str]


@dataclass
class ReportColumn:
    """Ordered period/column descriptor (trial balance only)"""

    title: str
    col_type: str
    order: int
    parent_title: Optional[str] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    col_id: Optional[str] = None
    parent: Optional[ColumnKey] = None  # month header owning a Debit/Credit pair

    @property
    def key(self) -> ColumnKey:
        return ColumnKey(self.title, self.col_type, self.parent_title)

    @property
    def polarity(self) -> Optional[str]:
        for candidate in (self.title, self.parent_title):
            if candidate and candidate.strip().lower() in ("debit", "credit"):
                return candidate.strip().capitalize()
        return None


@dataclass
class ReportLine:
    """One flattened, non-zero monetary fact"""

    path: str
    account_name: str
    amount: float
    account_id: Optional[str] = None
    group: Optional[str] = None
    section: Optional[str] = None
    subsection: Optional[str] = None
    account_type: Optional[str] = None
    category: Optional[str] = None
    column_key: Optional[ColumnKey] = None
    polarity: Optional[str] = None  # "Debit" | "Credit" for trial balance


@dataclass
class ReportSummary:
    """Section rollup computed by the source system"""

    path: str
    label: str
    amount: float
    group: Optional[str] = None


@dataclass
class FlattenedReport:
    """Output of one flatten pass, ready for aggregation and persistence"""

    report_type: ReportType
    realm_id: str
    header: ReportHeader
    lines: List[ReportLine]
    summaries: List[ReportSummary]
    columns: List[ReportColumn] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)
    kpi: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CrossCheck:
    """Locally recomputed total compared to the total reported by the source"""

    name: str
    calculated: float
    reported: Optional[float]

    @property
    def balanced(self) -> bool:
        if self.reported is None:
            return True
        return abs(self.calculated - self.reported) < 0.01


@dataclass
class SaveResult:
    """Outcome of one persisted document"""

    report_id: int
    columns_count: int
    rows_count: int
    summaries_count: int = 0


@dataclass
class IngestionResult:
    """One report fetched, flattened, aggregated and persisted"""

    report_type: ReportType
    report_id: int
    columns_count: int
    rows_count: int
    summaries_count: int
    checks: List[CrossCheck] = field(default_factory=list)


@dataclass
class AccountSyncResult:
    """Outcome of one account's sync run"""

    connection_id: str
    realm_id: Optional[str]
    initiated_by: str
    status: SyncStatus = SyncStatus.PENDING
    history: List[SyncStatus] = field(default_factory=lambda: [SyncStatus.PENDING])
    reports: List[IngestionResult] = field(default_factory=list)
    error: Optional[str] = None
    failed_report_type: Optional[ReportType] = None
    attempts: int = 0

    def transition(self, status: SyncStatus) -> None:
        self.status = status
        self.history.append(status)
