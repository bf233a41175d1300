"""Structured logging helpers for the provisioning pipeline.

Console output goes to stderr because stdout is reserved for the linker
directives consumed by the build orchestrator. When a log directory is
configured, every record is also written as a JSON line with secrets masked,
and files older than the retention window are compressed and later purged.
"""

from __future__ import annotations

import gzip
import json
import logging
import re
import sys
import uuid
from datetime import datetime, timedelta, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .settings import LoggingSettings

__all__ = [
    "LOGGER_NAME",
    "ContextLogger",
    "LoggerLike",
    "JSONFormatter",
    "generate_correlation_id",
    "mask_sensitive_data",
    "setup_logging",
]

LOGGER_NAME = "MklSrc.Provisioning"

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]

_RESERVED_RECORD_FIELDS = frozenset(
    vars(logging.makeLogRecord({})).keys() | {"message", "asctime", "correlation_id", "stage"}
)
_SENSITIVE_KEYS = {"authorization", "api_key", "apikey", "token", "secret", "password"}
_URL_CREDENTIALS = re.compile(r"(?P<scheme>https?://)[^/@\s]+@")


def generate_correlation_id() -> str:
    """Return a short-lived identifier that links related log entries."""

    return uuid.uuid4().hex[:12]


class ContextLogger(logging.LoggerAdapter):
    """Adapter that merges its fields into each call's ``extra`` instead of replacing it."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Return a copy of ``payload`` with secret fields and URL credentials masked."""

    masked: Dict[str, object] = {}
    for key, value in payload.items():
        if key.lower() in _SENSITIVE_KEYS:
            masked[key] = "***masked***"
        elif isinstance(value, str):
            masked[key] = _URL_CREDENTIALS.sub(r"\g<scheme>***masked***@", value)
        else:
            masked[key] = value
    return masked


class JSONFormatter(logging.Formatter):
    """Formatter emitting masked JSON log entries."""

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        payload: Dict[str, object] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "stage": getattr(record, "stage", None),
        }
        for key, value in vars(record).items():
            if key in _RESERVED_RECORD_FIELDS or key.startswith("_"):
                continue
            payload[key] = value if isinstance(value, (int, float, bool, type(None))) else str(value)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(payload))


def _compress_old_log(path: Path) -> None:
    compressed_path = path.with_suffix(path.suffix + ".gz")
    with path.open("rb") as source, gzip.open(compressed_path, "wb") as target:
        target.write(source.read())
    path.unlink(missing_ok=True)


def _cleanup_logs(log_dir: Path, retention_days: int) -> List[str]:
    """Compress stale ``.jsonl`` files and delete expired archives."""

    actions: List[str] = []
    now = datetime.now(timezone.utc)
    retention_delta = timedelta(days=retention_days)
    for file in log_dir.glob("*.jsonl"):
        mtime = datetime.fromtimestamp(file.stat().st_mtime, tz=timezone.utc)
        if now - mtime > retention_delta:
            _compress_old_log(file)
            actions.append(f"Compressed {file.name}")
    for file in log_dir.glob("*.jsonl.gz"):
        mtime = datetime.fromtimestamp(file.stat().st_mtime, tz=timezone.utc)
        if now - mtime > retention_delta:
            file.unlink(missing_ok=True)
            actions.append(f"Deleted expired archive {file.name}")
    return actions


def setup_logging(
    config: Optional[LoggingSettings] = None,
    *,
    log_dir: Optional[Path] = None,
    propagate: bool = False,
) -> logging.Logger:
    """Configure the provisioning logger with a console handler and optional JSON sidecar.

    Args:
        config: Logging settings; defaults are used when omitted.
        log_dir: Overrides ``config.log_dir`` for the JSON log file location.
        propagate: Whether records also reach the root logger.

    Returns:
        The configured ``MklSrc.Provisioning`` logger.
    """

    settings = config or LoggingSettings()
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(settings.level_int())

    for handler in list(logger.handlers):
        if getattr(handler, "_mklfetch_managed", False):
            logger.removeHandler(handler)
            handler.close()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    stream_handler._mklfetch_managed = True  # type: ignore[attr-defined]
    logger.addHandler(stream_handler)

    resolved_dir = log_dir or settings.log_dir
    if resolved_dir is not None:
        resolved_dir = Path(resolved_dir)
        resolved_dir.mkdir(parents=True, exist_ok=True)
        _cleanup_logs(resolved_dir, settings.retention_days)
        today = datetime.now(timezone.utc).strftime("%Y%m%d")
        file_handler = RotatingFileHandler(
            resolved_dir / f"mklfetch-{today}.jsonl",
            maxBytes=int(settings.max_log_size_mb * 1024 * 1024),
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(JSONFormatter())
        file_handler._mklfetch_managed = True  # type: ignore[attr-defined]
        logger.addHandler(file_handler)

    logger.propagate = propagate
    return logger
