"""Marker-delimited section store for a generated configuration file.

Handles:
- Finding managed sections between BEGIN/END marker lines
- Replacing, appending, commenting out and removing sections
- Timestamped backups before every change
- Atomic writes (temp file + rename) serialized by a lock

A managed section looks like:

    ; BEGIN MANAGED - Extension 101
    [101]
    type=endpoint
    ...
    ; END MANAGED - Extension 101

Everything outside the markers is never touched.
"""
import contextlib
import logging
import os
import re
import shutil
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..errors import IOFailure, SectionNotFound
from ..utils.logging_config import timed_section
from .git_manager import GitError, GitManager

logger = logging.getLogger(__name__)

BEGIN_PREFIX = "; BEGIN MANAGED - "
END_PREFIX = "; END MANAGED - "
COMMENT_PREFIX = "; "

_BEGIN_RE = re.compile(r"^; BEGIN MANAGED - (?P<label>.+?)\s*$")
# Timestamp and collision suffix written by _backup()
_BACKUP_SUFFIX = r"\.\d{8}T\d{6}_\d{6}(_\d+)?\.bak"


@dataclass
class ConfigSection:
    """A managed section as currently written in the file."""
    label: str
    body: str
    active: bool


@dataclass
class _Block:
    label: str
    start: int  # index of the BEGIN line
    end: int    # index of the END line


def _strip_eol(line: str) -> str:
    return line.rstrip("\r\n")


def _is_active(body_lines: list[str]) -> bool:
    for line in body_lines:
        stripped = line.strip()
        if stripped and not stripped.startswith(";"):
            return True
    return False


class ConfigSectionStore:
    """
    Manages managed sections inside one text configuration file.

    All mutations are serialized, backed up and written atomically.
    A mutation that would not change the file is skipped entirely.
    """

    def __init__(
        self,
        path: Path,
        backup_dir: Optional[Path] = None,
        max_backups: int = 0,
        git_enabled: bool = False,
    ):
        """
        Initialize the section store.

        Args:
            path: Configuration file to manage (e.g. /etc/asterisk/pjsip.conf)
            backup_dir: Directory for backups (default: next to the file)
            max_backups: Keep only this many newest backups (0 keeps all)
            git_enabled: Commit every change in the file's directory
        """
        self.path = Path(path)
        self.backup_dir = Path(backup_dir) if backup_dir else self.path.parent
        self.max_backups = max_backups
        self.git_enabled = git_enabled
        self._git_manager = None
        self._lock = threading.Lock()

    @property
    def git(self) -> Optional[GitManager]:
        """Get or create GitManager for the config file's directory."""
        if self._git_manager is None and self.git_enabled:
            self._git_manager = GitManager(self.path.parent)
            self._git_manager.init()
        return self._git_manager

    # === Reading ===

    def read_text(self) -> str:
        """Return the file content exactly as stored."""
        try:
            return self.path.read_bytes().decode("utf-8")
        except FileNotFoundError as e:
            raise IOFailure(f"Config file not found: {self.path}", str(self.path)) from e
        except (OSError, UnicodeDecodeError) as e:
            raise IOFailure(f"Failed to read {self.path}: {e}", str(self.path)) from e

    def list_sections(self) -> list[ConfigSection]:
        """All managed sections in file order."""
        lines = self.read_text().splitlines(keepends=True)
        return [self._to_section(lines, block) for block in self._find_blocks(lines)]

    def get_section(self, label: str) -> Optional[ConfigSection]:
        """First section with this label, or None."""
        lines = self.read_text().splitlines(keepends=True)
        for block in self._find_blocks(lines):
            if block.label == label:
                return self._to_section(lines, block)
        return None

    def has_active_section(self, label: str) -> bool:
        section = self.get_section(label)
        return section is not None and section.active

    # === Mutations ===

    def ensure_file(self, header_lines: Optional[list[str]] = None) -> bool:
        """
        Create the config file with a header if it does not exist.

        Returns:
            True if the file was created
        """
        with self._lock:
            if self.path.exists():
                return False
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise IOFailure(f"Failed to create {self.path.parent}: {e}", str(self.path)) from e
            content = "".join(f"{line}\n" for line in (header_lines or []))
            self._atomic_write(content)
            logger.info(f"Created config file {self.path}")
            return True

    def write_section(self, label: str, body: str) -> bool:
        """
        Replace the section with this label, or append it if absent.

        Exactly one section with the label exists afterwards; duplicate
        sections left by hand edits are dropped.

        Returns:
            True if the file changed
        """
        self._check_label(label)
        with self._lock:
            return self._write_section(self.read_text(), label, body)

    def comment_out_section(self, label: str) -> bool:
        """
        Deactivate a section by commenting its body, keeping the markers.

        Returns:
            True if the file changed (False if already inactive)
        """
        return self._rewrite_body(label, self._comment_lines, "Comment out section")

    def uncomment_section(self, label: str) -> bool:
        """Reactivate a section previously commented out."""
        return self._rewrite_body(label, self._uncomment_lines, "Uncomment section")

    def remove_section(self, label: str) -> bool:
        """
        Delete a section including its markers.

        Returns:
            True if removed, False if no such section existed
        """
        self._check_label(label)
        with self._lock:
            text = self.read_text()
            lines = text.splitlines(keepends=True)
            blocks = [b for b in self._find_blocks(lines) if b.label == label]
            if not blocks:
                logger.debug(f"Section '{label}' not present, nothing to remove")
                return False

            drop: set[int] = set()
            for block in blocks:
                drop.update(range(block.start, block.end + 1))
                before = block.start - 1
                after = block.end + 1
                # Drop the separator line written when the section was appended
                if (
                    before >= 0
                    and not lines[before].strip()
                    and (after >= len(lines) or not lines[after].strip())
                ):
                    drop.add(before)

            new_text = "".join(line for i, line in enumerate(lines) if i not in drop)
            return self._commit(text, new_text, f"Remove section: {label}")

    def ensure_static_block(self, label: str, body: str) -> bool:
        """
        Write a section only if no section with this label exists.

        Returns:
            True if the section was written
        """
        self._check_label(label)
        with self._lock:
            text = self.read_text()
            if any(b.label == label for b in self._find_blocks(text.splitlines(keepends=True))):
                logger.debug(f"Static block '{label}' already present")
                return False
            return self._write_section(text, label, body)

    # === Backups ===

    def list_backups(self) -> list[Path]:
        """Backups of this file, oldest first."""
        if not self.backup_dir.exists():
            return []
        pattern = re.compile(re.escape(self.path.name) + _BACKUP_SUFFIX)
        return sorted(p for p in self.backup_dir.iterdir() if pattern.fullmatch(p.name))

    def restore_backup(self, backup_path: Path) -> bool:
        """
        Replace the live file with a backup copy.

        The current content is itself backed up first.
        """
        backup_path = Path(backup_path)
        try:
            content = backup_path.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise IOFailure(f"Failed to read backup {backup_path}: {e}", str(backup_path)) from e

        with self._lock:
            text = self.read_text()
            return self._commit(text, content, f"Restore backup {backup_path.name}")

    # === Internals ===

    def _check_label(self, label: str) -> None:
        if not label or "\n" in label or "\r" in label or label != label.strip():
            raise ValueError(f"Invalid section label: {label!r}")

    def _find_blocks(self, lines: list[str]) -> list[_Block]:
        blocks = []
        i = 0
        while i < len(lines):
            match = _BEGIN_RE.match(_strip_eol(lines[i]))
            if not match:
                i += 1
                continue

            label = match.group("label")
            end_marker = f"{END_PREFIX}{label}"
            end = None
            for j in range(i + 1, len(lines)):
                if _strip_eol(lines[j]).rstrip() == end_marker:
                    end = j
                    break

            if end is None:
                logger.warning(f"Unterminated section '{label}' at line {i + 1} in {self.path}")
                i += 1
                continue

            blocks.append(_Block(label=label, start=i, end=end))
            i = end + 1
        return blocks

    def _to_section(self, lines: list[str], block: _Block) -> ConfigSection:
        body_lines = lines[block.start + 1:block.end]
        body = "".join(_strip_eol(line) + "\n" for line in body_lines).rstrip("\n")
        return ConfigSection(label=block.label, body=body, active=_is_active(body_lines))

    def _newline(self, text: str) -> str:
        return "\r\n" if "\r\n" in text else "\n"

    def _body_lines(self, body: str, newline: str) -> list[str]:
        return [f"{line}{newline}" for line in body.strip("\r\n").splitlines()]

    def _comment_lines(self, body_lines: list[str]) -> list[str]:
        if not _is_active(body_lines):
            return body_lines
        return [
            f"{COMMENT_PREFIX}{line}" if line.strip() else line
            for line in body_lines
        ]

    def _uncomment_lines(self, body_lines: list[str]) -> list[str]:
        return [
            line[len(COMMENT_PREFIX):] if line.startswith(COMMENT_PREFIX) else line
            for line in body_lines
        ]

    def _write_section(self, text: str, label: str, body: str) -> bool:
        """Replace or append a section in text. Caller holds the lock."""
        lines = text.splitlines(keepends=True)
        newline = self._newline(text)
        body_lines = self._body_lines(body, newline)
        blocks = [b for b in self._find_blocks(lines) if b.label == label]

        if blocks:
            out: list[str] = []
            pos = 0
            for i, block in enumerate(blocks):
                out.extend(lines[pos:block.start])
                if i == 0:
                    out.append(lines[block.start])
                    out.extend(body_lines)
                    out.append(lines[block.end])
                pos = block.end + 1
            out.extend(lines[pos:])
            new_text = "".join(out)
        else:
            new_text = text
            if new_text and not new_text.endswith(("\n", "\r")):
                new_text += newline
            if new_text.strip():
                new_text += newline
            new_text += f"{BEGIN_PREFIX}{label}{newline}"
            new_text += "".join(body_lines)
            new_text += f"{END_PREFIX}{label}{newline}"

        return self._commit(text, new_text, f"Write section: {label}")

    def _rewrite_body(self, label: str, transform, reason: str) -> bool:
        self._check_label(label)
        with self._lock:
            text = self.read_text()
            lines = text.splitlines(keepends=True)
            blocks = [b for b in self._find_blocks(lines) if b.label == label]
            if not blocks:
                raise SectionNotFound(label)

            out: list[str] = []
            pos = 0
            for block in blocks:
                out.extend(lines[pos:block.start + 1])
                out.extend(transform(lines[block.start + 1:block.end]))
                pos = block.end
            out.extend(lines[pos:])
            return self._commit(text, "".join(out), f"{reason}: {label}")

    def _commit(self, old_text: str, new_text: str, message: str) -> bool:
        """Back up, write atomically and version. Caller holds the lock."""
        if new_text == old_text:
            logger.debug(f"{message}: no change")
            return False

        with timed_section("config_write", target=self.path.name):
            backup = self._backup()
            self._atomic_write(new_text)

        logger.info(f"{message} ({self.path}, backup {backup.name})")
        self._prune_backups()

        if self.git_enabled:
            try:
                self.git.commit(message=message, files=[self.path.name])
            except GitError as e:
                logger.warning(f"Config written but git commit failed: {e}")

        return True

    def _backup(self) -> Path:
        stamp = datetime.now().strftime("%Y%m%dT%H%M%S_%f")
        backup = self.backup_dir / f"{self.path.name}.{stamp}.bak"
        counter = 1
        while backup.exists():
            backup = self.backup_dir / f"{self.path.name}.{stamp}_{counter}.bak"
            counter += 1

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(self.path, backup)
        except OSError as e:
            raise IOFailure(f"Backup of {self.path} failed: {e}", str(self.path)) from e
        return backup

    def _atomic_write(self, content: str) -> None:
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
        except OSError as e:
            raise IOFailure(f"Failed to create temp file for {self.path}: {e}", str(self.path)) from e

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content.encode("utf-8"))
                f.flush()
                os.fsync(f.fileno())
            if self.path.exists():
                shutil.copymode(self.path, tmp_name)
            os.replace(tmp_name, self.path)
        except OSError as e:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise IOFailure(f"Failed to write {self.path}: {e}", str(self.path)) from e

    def _prune_backups(self) -> None:
        if self.max_backups <= 0:
            return
        backups = self.list_backups()
        for old in backups[:-self.max_backups]:
            try:
                old.unlink()
                logger.debug(f"Pruned backup {old.name}")
            except OSError as e:
                logger.warning(f"Failed to prune backup {old}: {e}")
