"""SQLAlchemy ORM models for connections, tokens, sync logs and report documents"""

import uuid
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

Money = Numeric(18, 2, asdecimal=False)


class QBOConnection(Base):
    """A QuickBooks company connected to the dashboard"""

    __tablename__ = "qbo_connections"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    realm_id = Column(Text, nullable=False, unique=True, index=True)
    organization_id = Column(Text, nullable=True, index=True)
    company_name = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    tokens = relationship("QBOToken", back_populates="connection", cascade="all, delete-orphan")


class QBOToken(Base):
    """Encrypted token pair; `version` guards concurrent rotation"""

    __tablename__ = "qbo_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(Uuid, ForeignKey("qbo_connections.id", ondelete="CASCADE"), nullable=False, index=True)
    access_token_encrypted = Column(Text, nullable=False)
    refresh_token_encrypted = Column(Text, nullable=False)
    access_expires_at = Column(DateTime(timezone=True), nullable=False)
    refresh_expires_at = Column(DateTime(timezone=True), nullable=True)
    revoked = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    connection = relationship("QBOConnection", back_populates="tokens")


class QBOSyncLog(Base):
    """One row per account sync run"""

    __tablename__ = "qbo_sync_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(Text, nullable=False, index=True)
    realm_id = Column(Text, nullable=True, index=True)
    initiated_by = Column(Text, nullable=False)
    status = Column(Text, nullable=False)
    report_types = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)


class ReportHeaderMixin:
    """Header columns shared by every report document table"""

    id = Column(Integer, primary_key=True, autoincrement=True)
    realm_id = Column(Text, nullable=False, index=True)
    report_name = Column(Text, nullable=False)
    report_basis = Column(Text, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    currency = Column(Text, nullable=True)
    accounting_standard = Column(Text, nullable=True)
    generated_at = Column(DateTime(timezone=True), nullable=False)
    raw = Column(JSON, nullable=False)
    kpi = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


# Trial balance


class TrialBalanceReport(ReportHeaderMixin, Base):
    __tablename__ = "trial_balance_reports"

    columns = relationship("TrialBalanceColumn", back_populates="report", cascade="all, delete-orphan")
    rows = relationship("TrialBalanceRow", back_populates="report", cascade="all, delete-orphan")
    summaries = relationship("TrialBalanceSummary", cascade="all, delete-orphan")


class TrialBalanceColumn(Base):
    """Ordered column of one trial balance document"""

    __tablename__ = "trial_balance_columns"
    __table_args__ = (
        UniqueConstraint("report_id", "col_title", "col_type", "parent_col_title", name="uq_tb_column_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(Integer, ForeignKey("trial_balance_reports.id", ondelete="CASCADE"), nullable=False, index=True)
    realm_id = Column(Text, nullable=False)
    col_title = Column(Text, nullable=False)
    col_type = Column(Text, nullable=False)
    parent_col_id = Column(Integer, ForeignKey("trial_balance_columns.id", ondelete="CASCADE"), nullable=True)
    parent_col_title = Column(Text, nullable=True)
    col_order = Column(Integer, nullable=False)
    col_id = Column(Text, nullable=True)
    period_start = Column(Date, nullable=True)
    period_end = Column(Date, nullable=True)

    report = relationship("TrialBalanceReport", back_populates="columns")


class TrialBalanceRow(Base):
    __tablename__ = "trial_balance_rows"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(Integer, ForeignKey("trial_balance_reports.id", ondelete="CASCADE"), nullable=False, index=True)
    column_id = Column(Integer, ForeignKey("trial_balance_columns.id", ondelete="CASCADE"), nullable=False, index=True)
    realm_id = Column(Text, nullable=False)
    path = Column(Text, nullable=False, default="")
    account_name = Column(Text, nullable=False)
    account_id = Column(Text, nullable=True)
    amount = Column(Money, nullable=False)
    polarity = Column(Text, nullable=True)
    category = Column(Text, nullable=True)
    group_name = Column(Text, nullable=True)

    report = relationship("TrialBalanceReport", back_populates="rows")


class TrialBalanceSummary(Base):
    __tablename__ = "trial_balance_summaries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(Integer, ForeignKey("trial_balance_reports.id", ondelete="CASCADE"), nullable=False, index=True)
    realm_id = Column(Text, nullable=False)
    path = Column(Text, nullable=False, default="")
    label = Column(Text, nullable=False)
    amount = Column(Money, nullable=False)
    group_name = Column(Text, nullable=True)


# Profit and loss


class PnlReport(ReportHeaderMixin, Base):
    __tablename__ = "pnl_reports"

    lines = relationship("PnlLine", cascade="all, delete-orphan")
    summaries = relationship("PnlSummary", cascade="all, delete-orphan")


class PnlLine(Base):
    __tablename__ = "pnl_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(Integer, ForeignKey("pnl_reports.id", ondelete="CASCADE"), nullable=False, index=True)
    realm_id = Column(Text, nullable=False)
    path = Column(Text, nullable=False, default="")
    account_name = Column(Text, nullable=False)
    account_id = Column(Text, nullable=True)
    amount = Column(Money, nullable=False)
    group_name = Column(Text, nullable=True)
    category = Column(Text, nullable=True)


class PnlSummary(Base):
    __tablename__ = "pnl_summaries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(Integer, ForeignKey("pnl_reports.id", ondelete="CASCADE"), nullable=False, index=True)
    realm_id = Column(Text, nullable=False)
    path = Column(Text, nullable=False, default="")
    label = Column(Text, nullable=False)
    amount = Column(Money, nullable=False)
    group_name = Column(Text, nullable=True)


# Balance sheet


class BalanceSheetReport(ReportHeaderMixin, Base):
    __tablename__ = "balance_sheet_reports"

    lines = relationship("BalanceSheetLineItem", cascade="all, delete-orphan")
    summaries = relationship("BalanceSheetSummary", cascade="all, delete-orphan")


class BalanceSheetLineItem(Base):
    __tablename__ = "balance_sheet_line_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(Integer, ForeignKey("balance_sheet_reports.id", ondelete="CASCADE"), nullable=False, index=True)
    realm_id = Column(Text, nullable=False)
    path = Column(Text, nullable=False, default="")
    account_name = Column(Text, nullable=False)
    account_id = Column(Text, nullable=True)
    amount = Column(Money, nullable=False)
    group_name = Column(Text, nullable=True)
    section = Column(Text, nullable=True)
    subsection = Column(Text, nullable=True)
    account_type = Column(Text, nullable=True)


class BalanceSheetSummary(Base):
    __tablename__ = "balance_sheet_summaries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(Integer, ForeignKey("balance_sheet_reports.id", ondelete="CASCADE"), nullable=False, index=True)
    realm_id = Column(Text, nullable=False)
    path = Column(Text, nullable=False, default="")
    label = Column(Text, nullable=False)
    amount = Column(Money, nullable=False)
    group_name = Column(Text, nullable=True)


# Cash flow


class CashFlowReport(ReportHeaderMixin, Base):
    __tablename__ = "cash_flow_reports"

    lines = relationship("CashFlowLine", cascade="all, delete-orphan")
    summaries = relationship("CashFlowTotal", cascade="all, delete-orphan")


class CashFlowLine(Base):
    __tablename__ = "cash_flow_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(Integer, ForeignKey("cash_flow_reports.id", ondelete="CASCADE"), nullable=False, index=True)
    realm_id = Column(Text, nullable=False)
    path = Column(Text, nullable=False, default="")
    account_name = Column(Text, nullable=False)
    account_id = Column(Text, nullable=True)
    amount = Column(Money, nullable=False)
    group_name = Column(Text, nullable=True)


class CashFlowTotal(Base):
    __tablename__ = "cash_flow_totals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(Integer, ForeignKey("cash_flow_reports.id", ondelete="CASCADE"), nullable=False, index=True)
    realm_id = Column(Text, nullable=False)
    path = Column(Text, nullable=False, default="")
    label = Column(Text, nullable=False)
    amount = Column(Money, nullable=False)
    group_name = Column(Text, nullable=True)


class ReportTables:
    """ORM classes backing one report type"""

    def __init__(self, report, line, summary, column=None):
        self.report = report
        self.line = line
        self.summary = summary
        self.column = column


REPORT_TABLES = {
    "TrialBalance": ReportTables(TrialBalanceReport, TrialBalanceRow, TrialBalanceSummary, TrialBalanceColumn),
    "ProfitAndLoss": ReportTables(PnlReport, PnlLine, PnlSummary),
    "BalanceSheet": ReportTables(BalanceSheetReport, BalanceSheetLineItem, BalanceSheetSummary),
    "CashFlow": ReportTables(CashFlowReport, CashFlowLine, CashFlowTotal),
}
