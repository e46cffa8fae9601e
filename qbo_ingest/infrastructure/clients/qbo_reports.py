"""QuickBooks reporting API client"""

import httpx
import logging
from datetime import date
from typing import Any, Dict
from qbo_ingest.domain.models import ConnectedAccount, ReportType
from qbo_ingest.domain.exceptions import AuthRefreshError, MappingError, ReportAPIError, TransientNetworkError
from qbo_ingest.infrastructure.observability.metrics import record_report_fetch, report_fetch_histogram
from qbo_ingest.config import settings

logger = logging.getLogger(__name__)


class ReportClient:
    """Client for the QuickBooks reports endpoint with a bounded 401 refresh-and-retry"""

    def __init__(
        self,
        vault,
        base_url: str | None = None,
        timeout: float | None = None,
        minor_version: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.vault = vault
        self.base_url = (base_url or settings.qbo_api_base).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self.minor_version = minor_version or settings.qbo_minor_version
        self.transport = transport

    async def fetch(
        self,
        account: ConnectedAccount,
        report_type: ReportType,
        start_date: date,
        end_date: date,
    ) -> Dict[str, Any]:
        """
        Fetch one raw report.

        A 401 triggers exactly one token refresh and one retry with the new
        token; a second 401 is terminal. Transient failures are raised, never
        retried here.

        Raises:
            AuthRefreshError: Second 401, or the refresh itself was rejected
            TransientNetworkError: Timeout, connection failure or 5xx
            ReportAPIError: Any other HTTP error status
            MappingError: Response body is not a JSON object
        """
        url = f"{self.base_url}/v3/company/{account.realm_id}/reports/{report_type.value}"
        params = {
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "summarize_column_by": report_type.summarize_column_by,
            "minorversion": str(self.minor_version),
        }

        access_token = await self.vault.get_valid_access_token(account.id)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await self._send(client, url, params, access_token, report_type)

            if response.status_code == 401:
                record_report_fetch(report_type.value, "unauthorized")
                logger.info(
                    "Report request unauthorized; refreshing token",
                    extra={"realm_id": account.realm_id, "report_type": report_type.value},
                )
                access_token = await self.vault.refresh(account.id, stale_access_token=access_token)
                response = await self._send(client, url, params, access_token, report_type)
                if response.status_code == 401:
                    record_report_fetch(report_type.value, "unauthorized")
                    raise AuthRefreshError(
                        f"{report_type.value} request for realm {account.realm_id} still unauthorized after refresh"
                    )

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code >= 500 or status_code == 429:
                record_report_fetch(report_type.value, "transient")
                raise TransientNetworkError(f"Report API error: {status_code}") from e
            record_report_fetch(report_type.value, "error")
            raise ReportAPIError(f"Report API error: {status_code}", status_code=status_code) from e

        try:
            payload = response.json()
        except ValueError as e:
            record_report_fetch(report_type.value, "error")
            raise MappingError(f"{report_type.value} response is not valid JSON") from e
        if not isinstance(payload, dict):
            record_report_fetch(report_type.value, "error")
            raise MappingError(f"{report_type.value} response is not a JSON object")

        record_report_fetch(report_type.value, "ok")
        return payload

    async def _send(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Dict[str, str],
        access_token: str,
        report_type: ReportType,
    ) -> httpx.Response:
        try:
            with report_fetch_histogram.time():
                return await client.get(
                    url,
                    params=params,
                    headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
                )
        except httpx.TimeoutException as e:
            record_report_fetch(report_type.value, "transient")
            raise TransientNetworkError(f"Report API timeout after {self.timeout}s") from e
        except httpx.TransportError as e:
            record_report_fetch(report_type.value, "transient")
            raise TransientNetworkError(f"Report API connection error: {e}") from e
