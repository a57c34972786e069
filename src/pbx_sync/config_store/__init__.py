"""Configuration store package for the generated telephony config file.

This package provides:
- ConfigSectionStore: marker-delimited section CRUD with backups and atomic writes
- ConfigSection: a managed section as read from the file
- GitManager: optional git versioning of the config directory
"""

from .store import (
    ConfigSectionStore,
    ConfigSection,
    BEGIN_PREFIX,
    END_PREFIX,
    COMMENT_PREFIX,
)
from .git_manager import GitManager, CommitInfo, GitError

__all__ = [
    "ConfigSectionStore",
    "ConfigSection",
    "BEGIN_PREFIX",
    "END_PREFIX",
    "COMMENT_PREFIX",
    "GitManager",
    "CommitInfo",
    "GitError",
]
