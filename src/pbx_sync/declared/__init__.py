"""Declared extension records (the administrator's intent)."""
from .store import (
    YamlDeclaredStore,
    DeclaredStoreError,
    InvalidRecord,
    DEFAULT_DECLARED_DIR,
)
from .validator import RecordValidator

__all__ = [
    "YamlDeclaredStore",
    "DeclaredStoreError",
    "InvalidRecord",
    "DEFAULT_DECLARED_DIR",
    "RecordValidator",
]
