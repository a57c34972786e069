"""Interfaces the sync engine consumes from the rest of the system."""
from typing import Optional, Protocol

from .schema import ExtensionRecord, RuntimeSnapshot


class DeclaredStore(Protocol):
    """Administrator's declared extension records."""

    def list_all(self) -> list[ExtensionRecord]:
        ...

    def load_all(self) -> tuple[list[ExtensionRecord], dict[str, Exception]]:
        """Readable records plus the read error of each unreadable one, by number."""
        ...

    def get(self, number: str) -> Optional[ExtensionRecord]:
        ...

    def upsert(self, record: ExtensionRecord) -> ExtensionRecord:
        ...

    def delete(self, number: str) -> bool:
        ...


class RuntimeProbe(Protocol):
    """Structured view of the telephony server's live state."""

    def snapshot(self) -> list[RuntimeSnapshot]:
        ...

    def is_registered(self, number: str) -> bool:
        ...


class ConfigRenderer(Protocol):
    """Turns a declared record into the section body to write."""

    def render_section(self, record: ExtensionRecord) -> str:
        ...

    def render_transports(self) -> str:
        ...


class ReloadTrigger(Protocol):
    """Makes the telephony server pick up a changed config.

    Raises ReloadFailure when the reload did not succeed.
    """

    def reload(self) -> None:
        ...
