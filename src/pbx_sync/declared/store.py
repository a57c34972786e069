"""YAML-backed declared store for extension records.

One document per extension:

    ~/.pbx-sync/extensions/
    ├── 101.yaml
    ├── 102.yaml
    └── ...
"""
import logging
import os
from pathlib import Path
from typing import Optional

import yaml

from ..errors import NotInDeclaredStore, PbxSyncError
from ..sync.schema import ExtensionRecord, extension_sort_key
from .validator import RecordValidator

logger = logging.getLogger(__name__)

DEFAULT_DECLARED_DIR = Path.home() / ".pbx-sync" / "extensions"


class DeclaredStoreError(PbxSyncError):
    """A declared record could not be read or written."""
    pass


class InvalidRecord(DeclaredStoreError):
    def __init__(self, number: str, errors: list[str]):
        self.number = number
        self.errors = errors
        super().__init__(f"Invalid record {number}: {'; '.join(errors)}")


class YamlDeclaredStore:
    """
    Declared extension records stored as YAML files.

    Reads are strict: an unreadable record raises instead of being
    skipped, so a broken file never looks like a missing extension.
    """

    def __init__(self, base_dir: Optional[Path] = None):
        self.base_dir = Path(base_dir) if base_dir else DEFAULT_DECLARED_DIR
        self.validator = RecordValidator(require_secret=False)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, number: str) -> Path:
        return self.base_dir / f"{number}.yaml"

    def _load(self, path: Path) -> ExtensionRecord:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
            data.setdefault("number", path.stem)
            record = ExtensionRecord.from_dict(data)
        except (OSError, yaml.YAMLError, KeyError, TypeError, ValueError, AttributeError) as e:
            raise DeclaredStoreError(f"Failed to read declared record {path.name}: {e}") from e

        if record.number != path.stem:
            raise DeclaredStoreError(
                f"Declared record {path.name} holds extension {record.number}"
            )
        return record

    def load_all(self) -> tuple[list[ExtensionRecord], dict[str, DeclaredStoreError]]:
        """
        Read every record, collecting failures instead of stopping at the first.

        Returns:
            Readable records ordered by number, and the read error for each
            unreadable file keyed by the number in its file name
        """
        records = []
        errors: dict[str, DeclaredStoreError] = {}
        for path in self.base_dir.glob("*.yaml"):
            try:
                records.append(self._load(path))
            except DeclaredStoreError as e:
                logger.warning(str(e))
                errors[path.stem] = e
        records.sort(key=lambda r: extension_sort_key(r.number))
        return records, errors

    def list_all(self) -> list[ExtensionRecord]:
        """
        All declared records, ordered by number.

        Raises:
            DeclaredStoreError: a record file could not be read
        """
        records, errors = self.load_all()
        if errors:
            raise errors[min(errors, key=extension_sort_key)]
        return records

    def list_numbers(self) -> list[str]:
        return sorted((p.stem for p in self.base_dir.glob("*.yaml")), key=extension_sort_key)

    def get(self, number: str) -> Optional[ExtensionRecord]:
        """Get a record, or None if it is not declared."""
        path = self._path(number)
        if not path.exists():
            return None
        return self._load(path)

    def upsert(self, record: ExtensionRecord) -> ExtensionRecord:
        """
        Create or replace a declared record.

        Raises:
            InvalidRecord: the record fails validation
            DeclaredStoreError: the file could not be written
        """
        validation = self.validator.validate(record)
        if not validation.valid:
            raise InvalidRecord(record.number, validation.errors)
        for warning in validation.warnings:
            logger.warning(f"Extension {record.number}: {warning}")

        path = self._path(record.number)
        existed = path.exists()
        tmp = path.with_suffix(".yaml.tmp")
        try:
            tmp.write_text(
                yaml.safe_dump(record.to_dict(), default_flow_style=False, sort_keys=False),
                encoding="utf-8",
            )
            os.replace(tmp, path)
        except OSError as e:
            raise DeclaredStoreError(f"Failed to write declared record {record.number}: {e}") from e

        logger.info(f"{'Updated' if existed else 'Created'} declared extension {record.number}")
        return record

    def delete(self, number: str) -> bool:
        """Delete a record. Returns False if it did not exist."""
        path = self._path(number)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            raise DeclaredStoreError(f"Failed to delete declared record {number}: {e}") from e
        logger.info(f"Deleted declared extension {number}")
        return True

    def set_enabled(self, number: str, enabled: bool) -> ExtensionRecord:
        """Toggle a record's enabled flag."""
        record = self.get(number)
        if record is None:
            raise NotInDeclaredStore(number)
        record.enabled = enabled
        return self.upsert(record)
