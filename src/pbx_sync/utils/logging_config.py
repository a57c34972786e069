"""Logging configuration for pbx-sync.

Provides configurable logging with:
- File-based logging with rotation
- Console output for real-time debugging
- Performance timing for sync passes and config writes

Environment Variables:
    PBX_SYNC_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    PBX_SYNC_LOG_FILE: Path to log file (default: ~/.pbx-sync/pbx-sync.log)
    PBX_SYNC_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    PBX_SYNC_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from pbx_sync.utils.logging_config import setup_logging, timed

    setup_logging()  # Call once at startup

    @timed("auto_sync")
    def auto_sync(self):
        ...

    with timed_section("config_write", target="pjsip.conf"):
        ...
"""
import functools
import logging
import os
import time
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Optional

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("pbx_sync.perf")


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("PBX_SYNC_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file(log_dir: Optional[Path] = None) -> Path:
    """Get log file path from environment."""
    default_dir = log_dir or Path.home() / ".pbx-sync"
    path_str = os.environ.get("PBX_SYNC_LOG_FILE", str(default_dir / "pbx-sync.log"))
    return Path(path_str)


def setup_logging(log_dir: Optional[Path] = None, verbose: bool = False) -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler (INFO+ by default, respects PBX_SYNC_LOG_LEVEL)
    - File handler with rotation (DEBUG level - captures everything)
    - Performance log in a separate file
    """
    log_level = logging.DEBUG if verbose else get_log_level()
    log_file = get_log_file(log_dir)
    max_size_mb = int(os.environ.get("PBX_SYNC_LOG_MAX_SIZE", "10"))
    backup_count = int(os.environ.get("PBX_SYNC_LOG_BACKUPS", "5"))

    log_file.parent.mkdir(parents=True, exist_ok=True)

    main_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(name)-28s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    perf_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | PERF | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(main_format)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(main_format)

    perf_log_file = log_file.parent / "pbx-sync-perf.log"
    perf_handler = RotatingFileHandler(
        perf_log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    perf_handler.setLevel(logging.DEBUG)
    perf_handler.setFormatter(perf_format)

    root_logger = logging.getLogger("pbx_sync")
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Perf records go to their own file only
    perf_logger.setLevel(logging.DEBUG)
    perf_logger.handlers.clear()
    perf_logger.addHandler(perf_handler)
    perf_logger.propagate = False

    root_logger.info(f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}")


def _log_timing(operation: str, target: Optional[str], start: float, error: Optional[Exception], extra: dict) -> None:
    elapsed = (time.perf_counter() - start) * 1000
    status = "OK" if error is None else f"FAIL: {error}"
    msg = f"{operation:20s} | {target or 'N/A':15s} | {elapsed:8.2f}ms | {status}"
    if extra:
        msg += " | " + " | ".join(f"{k}={v}" for k, v in extra.items())
    if error is None:
        perf_logger.info(msg)
    else:
        perf_logger.warning(msg)


def timed(operation: str, target: Optional[str] = None):
    """Decorator to log execution time of a function.

    Args:
        operation: Name of the operation (e.g., "compare", "auto_sync")
        target: Optional target name (e.g., config file or extension)
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _log_timing(operation, target, start, e, {})
                raise
            _log_timing(operation, target, start, None, {})
            return result

        return wrapper

    return decorator


@contextmanager
def timed_section(operation: str, target: Optional[str] = None, **extra):
    """Context manager for timing code sections.

    Usage:
        with timed_section("config_write", target="pjsip.conf", label="Extension 101"):
            ...
    """
    start = time.perf_counter()
    try:
        yield
    except Exception as e:
        _log_timing(operation, target, start, e, extra)
        raise
    _log_timing(operation, target, start, None, extra)
