"""Git versioning for the generated configuration directory.

Provides:
- Repository initialization on first use
- A commit after every managed change
- History and per-revision file retrieval
"""
import logging
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class CommitInfo:
    """Information about a git commit."""
    hash: str
    short_hash: str
    author: str
    date: datetime
    message: str


class GitManager:
    """
    Runs git in the directory holding the managed config file.

    Only files passed to commit() are staged, so unmanaged files in
    the directory never end up in history by accident.
    """

    def __init__(self, repo_path: Path, author: str = "pbx-sync"):
        self.repo_path = Path(repo_path)
        self.author = author

    def _run_git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        """Run a git command in the repo directory."""
        cmd = ["git", "-C", str(self.repo_path)] + list(args)
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except OSError as e:
            raise GitError(f"Unable to run git: {e}") from e

        if check and result.returncode != 0:
            logger.error(f"Git command failed: {result.stderr}")
            raise GitError(f"Git command failed: {result.stderr.strip()}")

        return result

    def is_initialized(self) -> bool:
        return (self.repo_path / ".git").exists()

    def init(self) -> bool:
        """
        Initialize the repo if needed.

        Returns:
            True if newly initialized, False if it already existed
        """
        if self.is_initialized():
            return False

        self._run_git("init")
        self._run_git("config", "user.name", self.author)
        self._run_git("config", "user.email", f"{self.author}@localhost")

        gitignore = self.repo_path / ".gitignore"
        if not gitignore.exists():
            try:
                gitignore.write_text("*.bak\n*.tmp\n")
            except OSError as e:
                raise GitError(f"Failed to write {gitignore}: {e}") from e

        self._run_git("commit", "-m", "Initial configuration repository", "--allow-empty")
        logger.info(f"Initialized git repo at {self.repo_path}")
        return True

    def commit(self, message: str, files: list[str]) -> Optional[str]:
        """
        Commit the given files.

        Returns:
            Commit hash, or None if nothing changed
        """
        if not self.is_initialized():
            self.init()

        for f in files:
            self._run_git("add", "--", f)

        result = self._run_git("diff", "--cached", "--quiet", check=False)
        if result.returncode == 0:
            logger.debug("No changes to commit")
            return None

        self._run_git("commit", "-m", message)
        commit_hash = self._run_git("rev-parse", "HEAD").stdout.strip()

        logger.info(f"Committed: {commit_hash[:8]} - {message}")
        return commit_hash

    def get_history(self, file_path: Optional[str] = None, limit: int = 20) -> list[CommitInfo]:
        """Most recent commits first."""
        if not self.is_initialized():
            return []

        args = ["log", "--format=%H|%h|%an|%aI|%s", f"-n{limit}"]
        if file_path:
            args.extend(["--", file_path])

        result = self._run_git(*args, check=False)
        if result.returncode != 0:
            return []

        commits = []
        for line in result.stdout.strip().split("\n"):
            parts = line.split("|", 4)
            if len(parts) < 5:
                continue
            try:
                commits.append(CommitInfo(
                    hash=parts[0],
                    short_hash=parts[1],
                    author=parts[2],
                    date=datetime.fromisoformat(parts[3]),
                    message=parts[4],
                ))
            except ValueError as e:
                logger.warning(f"Failed to parse commit: {e}")

        return commits

    def get_file_at_revision(self, file_path: str, revision: str = "HEAD") -> Optional[str]:
        """File contents at a revision, or None if it did not exist."""
        if not self.is_initialized():
            return None

        result = self._run_git("show", f"{revision}:{file_path}", check=False)
        if result.returncode != 0:
            return None
        return result.stdout


class GitError(Exception):
    """Exception raised for git operation failures."""
    pass
