"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from trustlend.config import settings

SERVICE_NAME = settings.service_name

audit_logger = logging.getLogger("trustlend.audit")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = SERVICE_NAME


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


def log_decision(decision_type: str, reference_id: Optional[str], version: str, integrity_hash: str) -> None:
    """Log an automated judgment with its audit hash"""
    audit_logger.info(
        "Decision recorded",
        extra={
            "step": "decision_recorded",
            "decision_type": decision_type,
            "reference_id": reference_id,
            "parameters_version": version,
            "integrity_hash": integrity_hash,
        },
    )


def log_loan_transition(loan_id: str, from_state: str, to_state: str) -> None:
    audit_logger.info(
        "Loan state changed",
        extra={
            "step": "loan_transition",
            "loan_id": loan_id,
            "from_state": from_state,
            "to_state": to_state,
        },
    )


def log_fraud_alert(user_id: str, fraud_type: str, severity: str, under_review: bool) -> None:
    audit_logger.warning(
        "Fraud alert raised",
        extra={
            "step": "fraud_alert",
            "user_id": user_id,
            "fraud_type": fraud_type,
            "severity": severity,
            "under_review": under_review,
        },
    )


def log_integrity_violation(kind: str, record_id: str, stored_hash: str, computed_hash: str) -> None:
    """ERROR level: these must page someone"""
    audit_logger.error(
        "Integrity violation",
        extra={
            "step": "integrity_violation",
            "kind": kind,
            "record_id": record_id,
            "stored_hash": stored_hash,
            "computed_hash": computed_hash,
        },
    )
