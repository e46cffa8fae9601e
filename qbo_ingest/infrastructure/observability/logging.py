"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pythonjsonlogger import jsonlogger

from qbo_ingest.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # httpx logs every request line, query string included, at INFO
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def log_sync_outcome(
    connection_id: str,
    realm_id: Optional[str],
    initiated_by: str,
    status: str,
    reports: List[str],
    duration_ms: float,
    error: Optional[str] = None,
) -> None:
    """Log one structured record per account sync run"""
    level = logging.INFO if error is None else logging.ERROR
    logging.log(
        level,
        "Account sync finished",
        extra={
            "connection_id": connection_id,
            "realm_id": realm_id,
            "initiated_by": initiated_by,
            "step": "sync_complete",
            "status": status,
            "reports": reports,
            "duration_ms": duration_ms,
            "error": error,
        },
    )
