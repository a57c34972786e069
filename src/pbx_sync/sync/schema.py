"""Schema definitions for extension reconciliation.

Declared records, runtime snapshots and every result type produced by the
reconciliation engine and the sync policy.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..utils.convert import parse_bool

DEFAULT_CONTEXT = "from-internal"
DEFAULT_TRANSPORT = "transport-udp"
DEFAULT_CODECS = ["ulaw", "alaw", "g722"]
DEFAULT_MAX_CONTACTS = 1
DEFAULT_QUALIFY_FREQUENCY = 60

# Label of the static transport block in the generated config
TRANSPORT_LABEL = "Transports"

# Fields compared between declared and runtime state, in report order.
# Identity, display name and secret are never compared.
COMPARABLE_FIELDS = (
    "context",
    "transport",
    "codecs",
    "direct_media",
    "max_contacts",
    "qualify_frequency",
)


def extension_label(number: str) -> str:
    """Label of the managed config section for an extension."""
    return f"Extension {number}"


def extension_sort_key(number: str) -> tuple:
    """Numeric order for digit strings, lexicographic for anything else."""
    if number.isdigit():
        return (0, int(number), number)
    return (1, 0, number)


def _text(value: Any, default: str = "") -> str:
    if value is None or value == "":
        return default
    return str(value)


class SyncStatus(str, Enum):
    """Classification of one extension across declared and runtime state."""
    MATCH = "match"
    DECLARED_ONLY = "declared_only"
    RUNTIME_ONLY = "runtime_only"
    MISMATCH = "mismatch"


class SyncDirection(str, Enum):
    DECLARED_TO_RUNTIME = "declared_to_runtime"
    RUNTIME_TO_DECLARED = "runtime_to_declared"


@dataclass
class ExtensionRecord:
    """Declared intent for one extension."""
    number: str
    display_name: str = ""
    secret: str = field(default="", repr=False)
    context: str = DEFAULT_CONTEXT
    transport: str = DEFAULT_TRANSPORT
    codecs: list[str] = field(default_factory=lambda: list(DEFAULT_CODECS))
    direct_media: bool = False
    max_contacts: int = DEFAULT_MAX_CONTACTS
    qualify_frequency: int = DEFAULT_QUALIFY_FREQUENCY
    enabled: bool = True
    caller_id: str = ""
    voicemail_enabled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "display_name": self.display_name,
            "secret": self.secret,
            "context": self.context,
            "transport": self.transport,
            "codecs": list(self.codecs),
            "direct_media": self.direct_media,
            "max_contacts": self.max_contacts,
            "qualify_frequency": self.qualify_frequency,
            "enabled": self.enabled,
            "caller_id": self.caller_id,
            "voicemail_enabled": self.voicemail_enabled,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExtensionRecord":
        """
        Build a record from a loaded YAML mapping.

        Text fields are coerced to str (YAML reads `secret: 1234` as an int)
        and flags accept yes/no words.

        Raises:
            KeyError: no number
            ValueError: a number or flag cannot be converted
        """
        codecs = data.get("codecs")
        if isinstance(codecs, str):
            codecs = [c.strip() for c in codecs.split(",") if c.strip()]
        return cls(
            number=str(data["number"]),
            display_name=_text(data.get("display_name")),
            secret=_text(data.get("secret")),
            context=_text(data.get("context"), DEFAULT_CONTEXT),
            transport=_text(data.get("transport"), DEFAULT_TRANSPORT),
            codecs=[str(c) for c in codecs] if codecs else list(DEFAULT_CODECS),
            direct_media=parse_bool(data.get("direct_media", False)),
            max_contacts=int(data.get("max_contacts", DEFAULT_MAX_CONTACTS)),
            qualify_frequency=int(data.get("qualify_frequency", DEFAULT_QUALIFY_FREQUENCY)),
            enabled=parse_bool(data.get("enabled", True)),
            caller_id=_text(data.get("caller_id")),
            voicemail_enabled=parse_bool(data.get("voicemail_enabled", False)),
        )


@dataclass
class RuntimeSnapshot:
    """What the telephony server currently reports for one extension.

    A field left as None is not reported by the runtime and is skipped
    during comparison.
    """
    number: str
    registered: bool = False
    context: Optional[str] = None
    transport: Optional[str] = None
    codecs: Optional[list[str]] = None
    direct_media: Optional[bool] = None
    max_contacts: Optional[int] = None
    qualify_frequency: Optional[int] = None
    caller_id: Optional[str] = None
    secret: Optional[str] = field(default=None, repr=False)


@dataclass
class ValidationResult:
    """Result of record validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class SyncInfo:
    """Sync status of a single extension number."""
    number: str
    status: SyncStatus
    declared: Optional[ExtensionRecord] = None
    runtime: Optional[RuntimeSnapshot] = None
    differences: list[str] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return self.status == SyncStatus.MATCH


@dataclass
class SyncSummary:
    """Counts per status."""
    total: int = 0
    matched: int = 0
    declared_only: int = 0
    runtime_only: int = 0
    mismatched: int = 0

    @property
    def needs_action(self) -> bool:
        return self.total != self.matched

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "matched": self.matched,
            "declared_only": self.declared_only,
            "runtime_only": self.runtime_only,
            "mismatched": self.mismatched,
        }


@dataclass
class Conflict:
    """Two-sided drift left for a human to resolve."""
    number: str
    differences: list[str] = field(default_factory=list)


@dataclass
class ItemError:
    """Failure of one item inside a bulk or automatic sync."""
    number: str
    error: Exception

    def __str__(self) -> str:
        return f"ext {self.number}: {self.error}"


@dataclass
class SyncActionResult:
    """Outcome of a single-item sync operation."""
    number: str
    action: str
    success: bool = True
    reload_error: Optional[str] = None

    @property
    def warning(self) -> Optional[str]:
        if self.reload_error:
            return (
                f"Extension {self.number} written but reload failed: "
                f"{self.reload_error}. A manual reload may be required."
            )
        return None


@dataclass
class BulkSyncResult:
    """Result of a bulk sync: successes plus per-item failures."""
    direction: SyncDirection
    success_count: int = 0
    errors: list[ItemError] = field(default_factory=list)
    reload_error: Optional[str] = None

    @property
    def partial(self) -> bool:
        return bool(self.errors) and self.success_count > 0

    @property
    def attempted(self) -> int:
        return self.success_count + len(self.errors)

    def as_tuple(self) -> tuple[int, list[ItemError]]:
        return self.success_count, list(self.errors)


@dataclass
class SyncResult:
    """Result of an automatic sync pass."""
    pushed: int = 0
    pulled: int = 0
    already_in_sync: int = 0
    total_processed: int = 0
    conflicts: list[Conflict] = field(default_factory=list)
    errors: list[ItemError] = field(default_factory=list)
    reload_error: Optional[str] = None

    @property
    def has_conflicts(self) -> bool:
        return len(self.conflicts) > 0

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            f"Processed: {self.total_processed} extensions",
            f"Already in sync: {self.already_in_sync}",
            f"Declared -> runtime: {self.pushed} synced",
            f"Runtime -> declared: {self.pulled} synced",
        ]

        if self.conflicts:
            lines.append(f"Conflicts requiring attention: {len(self.conflicts)}")
            for c in self.conflicts:
                lines.append(f"  - Extension {c.number}: {', '.join(c.differences)}")

        if self.errors:
            lines.append(f"Errors: {len(self.errors)}")
            for e in self.errors:
                lines.append(f"  - {e}")

        if self.reload_error:
            lines.append(f"Reload failed: {self.reload_error}")

        return "\n".join(lines)
