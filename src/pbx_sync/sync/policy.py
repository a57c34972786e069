"""Sync policy - turns classifications into corrective actions.

Directional syncs for a single extension or in bulk, and the automatic
startup pass:

- declared only  -> pushed to the runtime config
- runtime only   -> pulled into the declared store
- mismatch       -> reported as a conflict, never auto-resolved
- match          -> counted, no action
"""
import logging
import re
from typing import Optional

from ..config_store import ConfigSectionStore
from ..errors import (
    NotInDeclaredStore,
    NotInRuntime,
    PbxSyncError,
    ReloadFailure,
    SectionNotFound,
)
from ..utils.audit_log import ChangeTracker
from ..utils.logging_config import timed
from .collaborators import ConfigRenderer, DeclaredStore, ReloadTrigger, RuntimeProbe
from .engine import ReconciliationEngine
from .schema import (
    BulkSyncResult,
    Conflict,
    ExtensionRecord,
    ItemError,
    RuntimeSnapshot,
    SyncActionResult,
    SyncDirection,
    SyncInfo,
    SyncResult,
    SyncStatus,
    SyncSummary,
    TRANSPORT_LABEL,
    extension_label,
    extension_sort_key,
)

logger = logging.getLogger(__name__)

PUSH_STATUSES = (SyncStatus.DECLARED_ONLY, SyncStatus.MISMATCH)
PULL_STATUSES = (SyncStatus.RUNTIME_ONLY, SyncStatus.MISMATCH)

_QUOTED_NAME = re.compile(r'^"(?P<name>[^"]*)"\s*<[^>]*>$')


def _display_name(snapshot: RuntimeSnapshot) -> str:
    """Name for a record imported from the runtime: caller id name or "Extension N"."""
    caller_id = (snapshot.caller_id or "").strip()
    match = _QUOTED_NAME.match(caller_id)
    if match and match.group("name").strip():
        return match.group("name").strip()
    return caller_id or f"Extension {snapshot.number}"


class SyncPolicy:
    """
    Applies sync decisions using injected collaborators.

    Usage:
        policy = SyncPolicy(declared, probe, sections, renderer, reloader=cli)
        result = policy.auto_sync()
        print(result.summary())
    """

    def __init__(
        self,
        declared: DeclaredStore,
        probe: RuntimeProbe,
        sections: ConfigSectionStore,
        renderer: ConfigRenderer,
        reloader: Optional[ReloadTrigger] = None,
        engine: Optional[ReconciliationEngine] = None,
        tracker: Optional[ChangeTracker] = None,
    ):
        """
        Initialize the policy.

        Args:
            declared: Declared record store
            probe: Runtime state probe
            sections: Section store for the generated config file
            renderer: Renders a record into a section body
            reloader: Reload trigger called after config changes (optional)
            engine: Reconciliation engine (default: new instance)
            tracker: Audit change tracker (default: system user)
        """
        self.declared = declared
        self.probe = probe
        self.sections = sections
        self.renderer = renderer
        self.reloader = reloader
        self.engine = engine or ReconciliationEngine()
        self.tracker = tracker or ChangeTracker()

    # === Comparison ===

    @timed("compare")
    def compare(self) -> list[SyncInfo]:
        """Classify every extension from the declared store and the runtime."""
        return self.engine.compare(self.declared.list_all(), self.probe.snapshot())

    def summary(self) -> SyncSummary:
        return self.engine.summarize(self.compare())

    # === Single item ===

    def sync_declared_to_runtime(self, number: str, reload: bool = True) -> SyncActionResult:
        """
        Write the declared record for one extension into the runtime config.

        A disabled record has its section commented out instead.

        Raises:
            NotInDeclaredStore: no declared record for this number
            RenderError: the record cannot be rendered
            IOFailure: the config file could not be updated
        """
        record = self.declared.get(number)
        if record is None:
            raise NotInDeclaredStore(number)

        try:
            changed = self._apply_record(record)
        except PbxSyncError as e:
            self._audit(number, "push", False, SyncDirection.DECLARED_TO_RUNTIME, error=str(e))
            raise

        result = SyncActionResult(number=number, action="push")
        if changed and reload:
            result.reload_error = self._reload()

        self._audit(
            number, "push", True, SyncDirection.DECLARED_TO_RUNTIME,
            details="changed" if changed else "unchanged",
            reload_error=result.reload_error,
        )
        return result

    def sync_runtime_to_declared(
        self,
        number: str,
        snapshot: Optional[RuntimeSnapshot] = None,
    ) -> SyncActionResult:
        """
        Upsert the declared record from what the runtime reports.

        Raises:
            NotInRuntime: the runtime has no entry for this number
        """
        if snapshot is None:
            snapshot = next((s for s in self.probe.snapshot() if s.number == number), None)
        if snapshot is None:
            raise NotInRuntime(number)

        record = self._record_from_snapshot(snapshot, self.declared.get(number))
        try:
            self.declared.upsert(record)
        except PbxSyncError as e:
            self._audit(number, "pull", False, SyncDirection.RUNTIME_TO_DECLARED, error=str(e))
            raise

        self._audit(number, "pull", True, SyncDirection.RUNTIME_TO_DECLARED)
        return SyncActionResult(number=number, action="pull")

    # === Bulk ===

    @timed("sync_all_push")
    def sync_all_declared_to_runtime(self) -> BulkSyncResult:
        """Push every declared-only or mismatched extension, continuing past failures."""
        infos, unreadable = self._scan()
        result = BulkSyncResult(direction=SyncDirection.DECLARED_TO_RUNTIME, errors=unreadable)
        for info in infos:
            if info.status not in PUSH_STATUSES:
                continue
            if self._attempt(
                result.errors, info.number, "Push", self.sync_declared_to_runtime,
                reload=False,
            ):
                result.success_count += 1

        if result.success_count:
            result.reload_error = self._reload()

        logger.info(
            f"Pushed {result.success_count} extension(s), {len(result.errors)} failed"
        )
        return result

    @timed("sync_all_pull")
    def sync_all_runtime_to_declared(self) -> BulkSyncResult:
        """Pull every runtime-only or mismatched extension, continuing past failures."""
        infos, unreadable = self._scan()
        result = BulkSyncResult(direction=SyncDirection.RUNTIME_TO_DECLARED, errors=unreadable)
        for info in infos:
            if info.status not in PULL_STATUSES:
                continue
            if self._attempt(
                result.errors, info.number, "Pull", self.sync_runtime_to_declared,
                snapshot=info.runtime,
            ):
                result.success_count += 1

        logger.info(
            f"Pulled {result.success_count} extension(s), {len(result.errors)} failed"
        )
        return result

    # === Automatic pass ===

    @timed("auto_sync")
    def auto_sync(self) -> SyncResult:
        """
        Heal one-sided drift, report two-sided drift.

        Mismatched extensions are left untouched on both sides and listed
        as conflicts. Failures of individual items, unreadable declared
        records included, are collected; a failure to build the comparison
        itself propagates.
        """
        infos, unreadable = self._scan()
        result = SyncResult(total_processed=len(infos) + len(unreadable), errors=unreadable)

        for info in infos:
            if info.status == SyncStatus.MATCH:
                result.already_in_sync += 1

            elif info.status == SyncStatus.DECLARED_ONLY:
                if self._attempt(
                    result.errors, info.number, "Auto-sync push", self.sync_declared_to_runtime,
                    reload=False,
                ):
                    result.pushed += 1

            elif info.status == SyncStatus.RUNTIME_ONLY:
                if self._attempt(
                    result.errors, info.number, "Auto-sync pull", self.sync_runtime_to_declared,
                    snapshot=info.runtime,
                ):
                    result.pulled += 1

            elif info.status == SyncStatus.MISMATCH:
                result.conflicts.append(Conflict(info.number, list(info.differences)))

        if result.pushed:
            result.reload_error = self._reload()

        if result.has_conflicts:
            logger.warning(
                f"Auto-sync found {len(result.conflicts)} conflict(s) requiring attention: "
                + ", ".join(c.number for c in result.conflicts)
            )
        logger.info(
            f"Auto-sync: {result.pushed} pushed, {result.pulled} pulled, "
            f"{result.already_in_sync} in sync, {len(result.errors)} failed"
        )
        return result

    # === Administrative operations ===

    def remove_from_runtime(self, number: str, reload: bool = True) -> SyncActionResult:
        """Remove an extension's section from the runtime config."""
        removed = self.sections.remove_section(extension_label(number))
        result = SyncActionResult(number=number, action="remove_runtime", success=removed)
        if removed and reload:
            result.reload_error = self._reload()
        self._audit(number, "remove_runtime", removed, reload_error=result.reload_error)
        return result

    def remove_from_declared(self, number: str) -> SyncActionResult:
        """Delete an extension's declared record."""
        if not self.declared.delete(number):
            raise NotInDeclaredStore(number)
        self._audit(number, "remove_declared", True)
        return SyncActionResult(number=number, action="remove_declared")

    def delete_extension(self, number: str) -> SyncActionResult:
        """
        Delete the config section and then the declared record.

        A failed section removal leaves the declared record in place.
        """
        try:
            removed = self.sections.remove_section(extension_label(number))
            deleted = self.declared.delete(number)
        except PbxSyncError as e:
            self._audit(number, "delete", False, error=str(e))
            raise
        if not deleted and not removed:
            raise NotInDeclaredStore(number)

        result = SyncActionResult(number=number, action="delete")
        if removed:
            result.reload_error = self._reload()
        self._audit(number, "delete", True, reload_error=result.reload_error)
        return result

    def set_enabled(self, number: str, enabled: bool) -> SyncActionResult:
        """
        Enable or disable an extension and apply it to the runtime config.

        Disabling comments the section out so hand-tuned settings survive;
        enabling rewrites it from the declared record.
        """
        record = self.declared.get(number)
        if record is None:
            raise NotInDeclaredStore(number)
        record.enabled = enabled
        self.declared.upsert(record)

        result = self.sync_declared_to_runtime(number)
        result.action = "enable" if enabled else "disable"
        return result

    def ensure_transports(self) -> bool:
        """Write the static transport block if it is missing."""
        written = self.sections.ensure_static_block(
            TRANSPORT_LABEL, self.renderer.render_transports()
        )
        if written:
            logger.info(f"Added static block '{TRANSPORT_LABEL}'")
        return written

    # === Internals ===

    def _scan(self) -> tuple[list[SyncInfo], list[ItemError]]:
        """Classify readable extensions; unreadable declared records become item errors.

        An unreadable number is left out of the runtime side too, so it is
        neither pushed nor pulled.
        """
        records, unreadable = self.declared.load_all()
        snapshots = [s for s in self.probe.snapshot() if s.number not in unreadable]
        errors = [
            ItemError(number, unreadable[number])
            for number in sorted(unreadable, key=extension_sort_key)
        ]
        return self.engine.compare(records, snapshots), errors

    def _attempt(self, errors: list[ItemError], number: str, what: str, action, **kwargs) -> bool:
        """Run one item of a bulk pass, recording its failure instead of raising."""
        try:
            action(number, **kwargs)
            return True
        except PbxSyncError as e:
            logger.warning(f"{what} of extension {number} failed: {e}")
            errors.append(ItemError(number, e))
        except Exception as e:
            logger.exception(f"{what} of extension {number} failed unexpectedly")
            errors.append(ItemError(number, e))
        return False

    def _apply_record(self, record: ExtensionRecord) -> bool:
        label = extension_label(record.number)
        if record.enabled:
            return self.sections.write_section(label, self.renderer.render_section(record))

        if self.sections.get_section(label) is None:
            if any(s.number == record.number for s in self.probe.snapshot()):
                raise SectionNotFound(
                    label,
                    f"Extension {record.number} is disabled but active outside a managed "
                    "section; comment it out by hand",
                )
            return False
        return self.sections.comment_out_section(label)

    def _record_from_snapshot(
        self,
        snapshot: RuntimeSnapshot,
        existing: Optional[ExtensionRecord],
    ) -> ExtensionRecord:
        if existing is not None:
            record = ExtensionRecord(**existing.to_dict())
        else:
            record = ExtensionRecord(
                number=snapshot.number,
                display_name=_display_name(snapshot),
                secret=snapshot.secret or "",
            )

        for name in ("context", "transport", "direct_media", "max_contacts", "qualify_frequency"):
            value = getattr(snapshot, name)
            if value is not None:
                setattr(record, name, value)
        if snapshot.codecs:
            record.codecs = list(snapshot.codecs)
        if snapshot.caller_id:
            record.caller_id = snapshot.caller_id
        if snapshot.secret and not record.secret:
            record.secret = snapshot.secret

        # An active runtime section means the extension is in use
        record.enabled = True
        return record

    def _reload(self) -> Optional[str]:
        if self.reloader is None:
            return None
        try:
            self.reloader.reload()
        except ReloadFailure as e:
            logger.warning(f"Config written but reload failed, manual reload may be required: {e}")
            return str(e)
        return None

    def _audit(
        self,
        number: str,
        operation: str,
        success: bool,
        direction: Optional[SyncDirection] = None,
        details: str = "",
        error: Optional[str] = None,
        reload_error: Optional[str] = None,
    ) -> None:
        self.tracker.log_change(
            extension=number,
            operation=operation,
            success=success,
            direction=direction.value if direction else None,
            details=details,
            error=error,
            reload_error=reload_error,
        )


def run_startup_sync(policy: SyncPolicy) -> Optional[SyncResult]:
    """
    Run the automatic pass at process start.

    Never raises: a failed pass is logged as a warning and startup continues.
    """
    try:
        result = policy.auto_sync()
    except Exception as e:
        logger.warning(f"Auto-sync failed, continuing startup: {e}")
        return None

    for line in result.summary().splitlines():
        logger.info(line)
    return result
