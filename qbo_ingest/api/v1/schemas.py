"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field, model_validator
from datetime import date, datetime
from typing import Any, Dict, List, Optional


class SyncRequest(BaseModel):
    """Request body for POST /v1/sync"""

    initiated_by: str = Field("manual", min_length=1, description="Label recorded in the sync log")
    connection_id: Optional[str] = Field(None, description="Sync one connection instead of all")
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def check_period(self) -> "SyncRequest":
        if (self.start_date is None) != (self.end_date is None):
            raise ValueError("start_date and end_date must be given together")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class ReportOutcome(BaseModel):
    """One persisted report within a sync run"""

    report_type: str
    report_id: int
    columns_count: int
    rows_count: int
    summaries_count: int
    balanced: bool


class AccountSyncResponse(BaseModel):
    """Outcome of one account's sync run"""

    connection_id: str
    realm_id: Optional[str] = None
    status: str
    history: List[str]
    reports: List[ReportOutcome]
    error: Optional[str] = None


class SyncResponse(BaseModel):
    """Response for POST /v1/sync"""

    initiated_by: str
    results: List[AccountSyncResponse]


class ConnectionCreate(BaseModel):
    """Request body for POST /v1/connections"""

    realm_id: str = Field(..., min_length=1, description="QuickBooks company id")
    organization_id: Optional[str] = None
    company_name: Optional[str] = None


class ConnectionResponse(BaseModel):
    connection_id: str
    realm_id: str
    organization_id: Optional[str] = None
    company_name: Optional[str] = None
    is_active: bool
    last_synced_at: Optional[datetime] = None


class AuthorizeRequest(BaseModel):
    """Request body for POST /v1/connections/{connection_id}/authorize"""

    code: str = Field(..., min_length=1, description="OAuth authorization code")


class ReportDocument(BaseModel):
    """Stored report header with its KPI document"""

    report_id: int
    report_name: str
    report_basis: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    currency: Optional[str] = None
    generated_at: datetime
    kpi: Optional[Dict[str, Any]] = None


class ReportListResponse(BaseModel):
    """Response for GET /v1/reports/{realm_id}/{report_type}"""

    realm_id: str
    report_type: str
    documents: List[ReportDocument]
