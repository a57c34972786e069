"""Sync engine - reconciliation of declared and runtime extension state.

Detects drift between the declared store and what the telephony server
runs, and applies directional syncs:
- Single extension or bulk, in either direction
- Automatic startup pass that heals one-sided drift
- Two-sided drift reported as conflicts, never auto-resolved

Usage:
    from pbx_sync.sync import SyncPolicy

    policy = SyncPolicy(declared, probe, sections, renderer, reloader=cli)
    result = policy.auto_sync()
    print(result.summary())
"""

from .engine import ReconciliationEngine, summarize_sync, describe_difference
from .policy import SyncPolicy, run_startup_sync
from .schema import (
    ExtensionRecord,
    RuntimeSnapshot,
    SyncStatus,
    SyncDirection,
    SyncInfo,
    SyncSummary,
    SyncResult,
    SyncActionResult,
    BulkSyncResult,
    Conflict,
    ItemError,
    ValidationResult,
    extension_label,
)
from .collaborators import DeclaredStore, RuntimeProbe, ConfigRenderer, ReloadTrigger

__all__ = [
    "ReconciliationEngine",
    "summarize_sync",
    "describe_difference",
    "SyncPolicy",
    "run_startup_sync",
    "ExtensionRecord",
    "RuntimeSnapshot",
    "SyncStatus",
    "SyncDirection",
    "SyncInfo",
    "SyncSummary",
    "SyncResult",
    "SyncActionResult",
    "BulkSyncResult",
    "Conflict",
    "ItemError",
    "ValidationResult",
    "extension_label",
    "DeclaredStore",
    "RuntimeProbe",
    "ConfigRenderer",
    "ReloadTrigger",
]
