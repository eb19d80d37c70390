import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any

from app.platform.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

SCAN_LOG_ERROR_LIMIT = 500


def _file_handler(formatter: logging.Formatter) -> RotatingFileHandler | None:
    if not settings.LOG_DIR:
        return None

    log_dir = os.path.join(os.getcwd(), settings.LOG_DIR)
    os.makedirs(log_dir, exist_ok=True)

    handler = RotatingFileHandler(
        os.path.join(log_dir, "a11y_scan.log"), maxBytes=10_000_000, backupCount=5
    )
    handler.setFormatter(formatter)
    return handler


def get_logger(name: str) -> logging.Logger:
    """
    Creates a logger instance that writes to console and, when LOG_DIR is set,
    to a rotating file.
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logger.setLevel(level)
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    file_handler = _file_handler(formatter)
    if file_handler:
        logger.addHandler(file_handler)

    return logger


_scan_logger = get_logger("scan_log")


def log_scan_event(
    *,
    ip: str,
    domain: str,
    result: str,
    job_id: str | None = None,
    is_admin: bool = False,
    duration_ms: int | None = None,
    error: str | None = None,
) -> dict[str, Any]:
    """
    Emit one structured line per scan request outcome, used for abuse detection.

    Result is one of queued, completed, failed, rejected, rate_limited.
    """
    payload: dict[str, Any] = {
        "event": "scan_request",
        "ip": ip,
        "domain": domain,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "result": result,
    }
    if job_id:
        payload["job_id"] = job_id
    if is_admin:
        payload["is_admin"] = True
    if duration_ms is not None:
        payload["duration_ms"] = duration_ms
    if error:
        payload["error"] = error[:SCAN_LOG_ERROR_LIMIT]

    _scan_logger.info("[SCAN_LOG] %s", json.dumps(payload))
    return payload
