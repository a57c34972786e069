"""Exception hierarchy for pbx-sync.

NotFoundError and its subclasses are usage errors (retrying will not help).
IOFailure aborts a single file mutation and is safe to retry.
ReloadFailure is soft: callers report it next to a successful write.
"""
from typing import Optional


class PbxSyncError(Exception):
    """Base class for all pbx-sync errors."""
    pass


class NotFoundError(PbxSyncError):
    """A record, section or runtime entry required by an operation is absent."""

    def __init__(self, number: str, message: Optional[str] = None):
        self.number = number
        super().__init__(message or f"{number} not found")


class NotInDeclaredStore(NotFoundError):
    def __init__(self, number: str):
        super().__init__(number, f"Extension {number} not found in declared store")


class NotInRuntime(NotFoundError):
    def __init__(self, number: str):
        super().__init__(number, f"Extension {number} not found in runtime configuration")


class SectionNotFound(NotFoundError):
    """Raised with the section label as ``number``."""

    def __init__(self, label: str, message: Optional[str] = None):
        super().__init__(label, message or f"Section '{label}' not found")
        self.label = label


class IOFailure(PbxSyncError):
    """File read/write/backup/rename failure. The live file is untouched."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class ReloadFailure(PbxSyncError):
    """The post-write reload of the telephony server did not succeed."""
    pass


class RenderError(PbxSyncError):
    """A declared record cannot be turned into configuration text."""

    def __init__(self, number: str, errors: list[str]):
        self.number = number
        self.errors = errors
        super().__init__(f"Extension {number}: {'; '.join(errors)}")


class ProbeError(PbxSyncError):
    """The runtime snapshot could not be taken."""
    pass


class ConfigError(PbxSyncError):
    """Settings file is missing or invalid."""
    pass
