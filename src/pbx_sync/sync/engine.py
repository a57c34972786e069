"""Reconciliation engine for declared vs runtime extension state.

Classifies every extension number found in either source and computes the
field-level differences. Pure: no I/O besides logging.
"""
import logging
from typing import Iterable, Optional

from .schema import (
    COMPARABLE_FIELDS,
    ExtensionRecord,
    RuntimeSnapshot,
    SyncInfo,
    SyncStatus,
    SyncSummary,
    extension_sort_key,
)

logger = logging.getLogger(__name__)


def _normalize_codecs(codecs: Iterable[str]) -> list[str]:
    return [c.strip().lower() for c in codecs if c and c.strip()]


def _field_equal(name: str, declared_value, runtime_value) -> bool:
    if name == "codecs":
        return _normalize_codecs(declared_value) == _normalize_codecs(runtime_value)
    if name in ("context", "transport"):
        return str(declared_value).strip() == str(runtime_value).strip()
    return declared_value == runtime_value


class ReconciliationEngine:
    """Compare declared records against runtime snapshots."""

    def compare(
        self,
        declared: Iterable[ExtensionRecord],
        runtime: Iterable[RuntimeSnapshot],
    ) -> list[SyncInfo]:
        """
        Classify the union of extension numbers from both sources.

        Args:
            declared: Records from the declared store
            runtime: Snapshots from the runtime probe

        Returns:
            One SyncInfo per distinct number, sorted by number
        """
        declared_map = self._index(declared, "declared")
        runtime_map = self._index(runtime, "runtime")

        infos = []
        for number in set(declared_map) | set(runtime_map):
            infos.append(
                self._classify(number, declared_map.get(number), runtime_map.get(number))
            )

        infos.sort(key=lambda info: extension_sort_key(info.number))
        return infos

    def _index(self, items, source: str) -> dict:
        index = {}
        for item in items:
            if item.number in index:
                logger.warning(
                    f"Duplicate extension {item.number} in {source} source, keeping first"
                )
                continue
            index[item.number] = item
        return index

    def _classify(
        self,
        number: str,
        declared: Optional[ExtensionRecord],
        runtime: Optional[RuntimeSnapshot],
    ) -> SyncInfo:
        if declared is not None and runtime is not None:
            differences = self.find_differences(declared, runtime)
            status = SyncStatus.MISMATCH if differences else SyncStatus.MATCH
            return SyncInfo(number, status, declared, runtime, differences)

        if declared is not None:
            # A disabled record is expected to have no active section
            if not declared.enabled:
                return SyncInfo(number, SyncStatus.MATCH, declared, None)
            return SyncInfo(number, SyncStatus.DECLARED_ONLY, declared, None)

        return SyncInfo(number, SyncStatus.RUNTIME_ONLY, None, runtime)

    def find_differences(
        self,
        declared: ExtensionRecord,
        runtime: RuntimeSnapshot,
    ) -> list[str]:
        """Names of every comparable field that differs.

        Fields the runtime does not report (None) are skipped.
        """
        if not declared.enabled:
            return ["enabled"]

        differences = []
        for name in COMPARABLE_FIELDS:
            runtime_value = getattr(runtime, name)
            if runtime_value is None:
                continue
            if not _field_equal(name, getattr(declared, name), runtime_value):
                differences.append(name)
        return differences

    def summarize(self, infos: Iterable[SyncInfo]) -> SyncSummary:
        """Count results per status."""
        summary = SyncSummary()
        for info in infos:
            summary.total += 1
            if info.status == SyncStatus.MATCH:
                summary.matched += 1
            elif info.status == SyncStatus.DECLARED_ONLY:
                summary.declared_only += 1
            elif info.status == SyncStatus.RUNTIME_ONLY:
                summary.runtime_only += 1
            elif info.status == SyncStatus.MISMATCH:
                summary.mismatched += 1
        return summary


def describe_difference(info: SyncInfo, name: str) -> str:
    """One-line description of a differing field, never showing secrets."""
    if name == "enabled":
        return "enabled: declared disabled, runtime has an active section"
    declared = getattr(info.declared, name, None)
    runtime = getattr(info.runtime, name, None)
    if name == "codecs":
        declared = ",".join(declared or [])
        runtime = ",".join(runtime or [])
    return f"{name}: declared={declared}, runtime={runtime}"


def summarize_sync(infos: list[SyncInfo]) -> str:
    """
    Create a human-readable sync report.

    Useful for the status command and for logging.
    """
    summary = ReconciliationEngine().summarize(infos)

    if not summary.needs_action:
        return f"All {summary.total} extensions in sync"

    lines = [
        f"Extensions: {summary.total} total, {summary.matched} in sync, "
        f"{summary.declared_only} declared only, {summary.runtime_only} runtime only, "
        f"{summary.mismatched} mismatched",
        "",
    ]

    for info in infos:
        if info.status == SyncStatus.DECLARED_ONLY:
            lines.append(f"  [+] {info.number}: not in runtime configuration")
        elif info.status == SyncStatus.RUNTIME_ONLY:
            lines.append(f"  [-] {info.number}: not in declared store")
        elif info.status == SyncStatus.MISMATCH:
            lines.append(f"  [~] {info.number}:")
            for name in info.differences:
                lines.append(f"      {describe_difference(info, name)}")

    return "\n".join(lines)
