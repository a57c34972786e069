"""Runtime probe built from pjsip.conf plus live registration state."""
import logging
from pathlib import Path
from typing import Optional

from ..errors import ProbeError
from ..sync.schema import RuntimeSnapshot
from ..utils.logging_config import timed
from .asterisk import AsteriskCLI, AsteriskCommandError
from .parser import parse_pjsip

logger = logging.getLogger(__name__)


class PjsipProbe:
    """
    Snapshot of what the telephony server runs for each extension.

    Configuration fields come from the active sections of pjsip.conf;
    registration state comes from `pjsip show endpoints`. If the console
    is unreachable every extension is reported unregistered.
    """

    def __init__(self, config_path: Path, cli: Optional[AsteriskCLI] = None):
        self.config_path = Path(config_path)
        self.cli = cli

    def _read_config(self) -> str:
        if not self.config_path.exists():
            logger.debug(f"{self.config_path} not found, no runtime extensions")
            return ""
        try:
            return self.config_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ProbeError(f"Failed to read {self.config_path}: {e}") from e

    def _registrations(self) -> dict[str, bool]:
        if self.cli is None:
            return {}
        try:
            return self.cli.registered_endpoints()
        except AsteriskCommandError as e:
            logger.warning(f"Could not read live registrations: {e}")
            return {}

    @timed("runtime_snapshot")
    def snapshot(self) -> list[RuntimeSnapshot]:
        snapshots = parse_pjsip(self._read_config())
        registered = self._registrations()
        for snapshot in snapshots:
            snapshot.registered = registered.get(snapshot.number, False)
        return snapshots

    def is_registered(self, number: str) -> bool:
        return self._registrations().get(number, False)
