"""Thin wrapper around the Asterisk remote console (`asterisk -rx`)."""
import logging
import subprocess
from typing import Optional

from ..errors import PbxSyncError, ReloadFailure
from ..utils.retry import with_retry
from .parser import parse_endpoint_states

logger = logging.getLogger(__name__)

DEFAULT_RELOAD_COMMAND = "module reload res_pjsip.so"

# Printed by `asterisk -rx` when the daemon is not reachable
_NOT_RUNNING_MARKERS = (
    "Unable to connect to remote asterisk",
    "does /var/run/asterisk/asterisk.ctl exist",
)


class AsteriskCommandError(PbxSyncError):
    """A console command could not be executed."""
    pass


class AsteriskCLI:
    """
    Runs console commands against a local Asterisk.

    Transient failures (daemon not reachable, timeouts) are retried with
    exponential backoff before an AsteriskCommandError is raised.
    """

    def __init__(
        self,
        binary: str = "asterisk",
        timeout: float = 10.0,
        reload_command: str = DEFAULT_RELOAD_COMMAND,
        max_attempts: int = 3,
    ):
        self.binary = binary
        self.timeout = timeout
        self.reload_command = reload_command
        self._run = with_retry(max_attempts=max_attempts, min_wait=0.5, max_wait=5)(self._run_once)

    def _run_once(self, command: str) -> str:
        cmd = [self.binary, "-rx", command]
        logger.debug(f"Running: {' '.join(cmd)}")

        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            check=False,
        )
        output = (result.stdout or "") + (result.stderr or "")

        if any(marker in output for marker in _NOT_RUNNING_MARKERS):
            raise ConnectionRefusedError(output.strip())
        if result.returncode != 0:
            raise AsteriskCommandError(
                f"'{command}' exited with {result.returncode}: {output.strip()}"
            )
        return result.stdout or ""

    def execute(self, command: str) -> str:
        """
        Run a console command and return its output.

        Raises:
            AsteriskCommandError: the command failed after retries
        """
        try:
            return self._run(command)
        except AsteriskCommandError:
            raise
        except (OSError, subprocess.SubprocessError) as e:
            raise AsteriskCommandError(f"'{command}' failed: {e}") from e

    def reload(self) -> None:
        """
        Reload PJSIP so config changes take effect.

        Raises:
            ReloadFailure: the reload command failed
        """
        try:
            output = self.execute(self.reload_command)
        except AsteriskCommandError as e:
            raise ReloadFailure(str(e)) from e

        lowered = output.lower()
        if "unable" in lowered or "not found" in lowered or "failed" in lowered:
            raise ReloadFailure(output.strip())
        logger.info("PJSIP reloaded")

    def show_endpoints(self) -> str:
        return self.execute("pjsip show endpoints")

    def registered_endpoints(self) -> dict[str, bool]:
        """Registration state per numeric endpoint."""
        return parse_endpoint_states(self.show_endpoints())

    def endpoint_registered(self, number: str) -> Optional[bool]:
        """Registration state of one endpoint, None if Asterisk does not know it."""
        return self.registered_endpoints().get(number)
