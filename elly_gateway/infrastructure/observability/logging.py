"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

# httpx logs every request at INFO; bank calls have their own metrics
_QUIET_LOGGERS = ("httpx", "httpcore")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON records stamped with UTC time, level and the emitting service"""

    def __init__(self, *args: Any, service_name: str = "elly-gateway", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.service_name = service_name

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = self.service_name


def setup_logging(level: str = "INFO", service_name: str = "elly-gateway") -> None:
    """Route the root logger to stdout as JSON"""
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s", service_name=service_name)
    )
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_onboarding_complete(
    job_id: str,
    user_id: int,
    obligations_detected: int,
    per_bank_consent: Dict[str, str],
    duration_ms: float,
) -> None:
    """One line per finished run, for funnel analysis"""
    approved = sorted(bank for bank, status in per_bank_consent.items() if status == "approved")
    logging.info(
        "Onboarding completed",
        extra={
            "job_id": job_id,
            "user_id": user_id,
            "step": "onboarding_complete",
            "obligations_detected": obligations_detected,
            "per_bank_consent": per_bank_consent,
            "banks_approved": approved,
            "duration_ms": round(duration_ms, 1),
        },
    )
