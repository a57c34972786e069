"""Audit logging for sync actions.

Provides change tracking with:
- Timestamped entries for every declared or runtime mutation
- Structured JSON-lines log format
- Separate audit log file

Secrets are never written to the audit log.
"""
import json
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Dedicated audit logger
audit_logger = logging.getLogger("pbx_sync.audit")

DEFAULT_AUDIT_DIR = Path.home() / ".pbx-sync"


def setup_audit_logging(log_dir: Optional[Path] = None) -> Path:
    """Configure audit logging to file.

    Args:
        log_dir: Directory for the audit log. Defaults to ~/.pbx-sync/

    Returns:
        Path of the audit log file
    """
    log_dir = Path(log_dir) if log_dir else DEFAULT_AUDIT_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    audit_file = log_dir / "audit.log"

    audit_logger.setLevel(logging.INFO)
    audit_logger.handlers.clear()

    handler = RotatingFileHandler(
        audit_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)

    # Don't propagate to the pbx_sync logger
    audit_logger.propagate = False
    return audit_file


@dataclass
class ChangeRecord:
    """Record of one sync mutation."""
    timestamp: str
    extension: str
    operation: str  # push, pull, remove_runtime, delete, set_enabled, ...
    user: str
    success: bool
    direction: Optional[str] = None
    details: str = ""
    error: Optional[str] = None
    reload_error: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=None)

    @classmethod
    def from_json(cls, json_str: str) -> "ChangeRecord":
        return cls(**json.loads(json_str))


class ChangeTracker:
    """Write ChangeRecords for one actor (user or automatic pass)."""

    def __init__(self, user: str = "system"):
        self.user = user

    def log_change(
        self,
        extension: str,
        operation: str,
        success: bool,
        direction: Optional[str] = None,
        details: str = "",
        error: Optional[str] = None,
        reload_error: Optional[str] = None,
    ) -> ChangeRecord:
        """Log a sync mutation and return the record written."""
        record = ChangeRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            extension=extension,
            operation=operation,
            user=self.user,
            success=success,
            direction=direction,
            details=details[:1000],
            error=error,
            reload_error=reload_error,
        )
        audit_logger.info(record.to_json())
        return record


def get_recent_changes(
    log_file: Optional[Path] = None,
    extension: Optional[str] = None,
    operation: Optional[str] = None,
    limit: int = 100,
) -> list[ChangeRecord]:
    """Read recent changes from the audit log, most recent first."""
    log_file = Path(log_file) if log_file else DEFAULT_AUDIT_DIR / "audit.log"

    if not os.path.exists(log_file):
        return []

    records = []
    with open(log_file, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = ChangeRecord.from_json(line)
            except (json.JSONDecodeError, TypeError):
                continue  # Skip malformed lines

            if extension and record.extension != extension:
                continue
            if operation and record.operation != operation:
                continue
            records.append(record)

    return list(reversed(records[-limit:]))
