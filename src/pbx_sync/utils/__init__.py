"""Utility modules for logging, auditing and retries."""
from .logging_config import setup_logging, timed, timed_section, perf_logger
from .audit_log import ChangeTracker, ChangeRecord, setup_audit_logging, get_recent_changes
from .retry import with_retry
from .convert import parse_bool

__all__ = [
    "setup_logging",
    "timed",
    "timed_section",
    "perf_logger",
    "ChangeTracker",
    "ChangeRecord",
    "setup_audit_logging",
    "get_recent_changes",
    "with_retry",
    "parse_bool",
]
