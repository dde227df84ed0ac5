"""
SSH command executor for the single-node cluster host.
"""

import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from errors import RemoteCommandError

logger = logging.getLogger(__name__)


@dataclass
class RemoteResult:
    """Output of one remote command."""

    command: str
    returncode: int
    stdout: str
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class RemoteExecutor:
    """Runs shell command strings on one host through the ssh client."""

    def __init__(
        self,
        host: str,
        user: str = "core",
        ssh_key: Optional[str] = None,
        timeout_s: int = 120,
    ):
        """
        Initialize the executor.

        Args:
            host: Hostname or address of the node
            user: Remote login user
            ssh_key: Optional path to a private key
            timeout_s: Per-command timeout in seconds
        """
        self.host = host
        self.user = user
        self.ssh_key = ssh_key
        self.timeout_s = timeout_s

    def _ssh_argv(self, command: str) -> List[str]:
        argv = ["ssh", "-q"]
        if self.ssh_key:
            argv += ["-i", self.ssh_key]
        argv += [
            "-o",
            "StrictHostKeyChecking=no",
            "-o",
            "ConnectTimeout=10",
            f"{self.user}@{self.host}",
            command,
        ]
        return argv

    def run(self, command: str) -> RemoteResult:
        """
        Run a command and capture its output, whatever the exit status.

        Args:
            command: Shell command line, interpreted by the remote shell

        Returns:
            RemoteResult; returncode 255 means ssh itself failed
        """
        logger.debug(f"ssh {self.user}@{self.host}: {command}")
        try:
            proc = subprocess.run(
                self._ssh_argv(command),
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return RemoteResult(
                command=command,
                returncode=124,
                stdout="",
                stderr=f"timed out after {self.timeout_s}s",
            )
        except OSError as e:
            return RemoteResult(command=command, returncode=127, stdout="", stderr=str(e))

        return RemoteResult(
            command=command,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )

    def check_output(self, command: str) -> str:
        """
        Run a command and return its stdout.

        Raises:
            RemoteCommandError: If the command exits non-zero
        """
        result = self.run(command)
        if not result.ok:
            raise RemoteCommandError(command, result.returncode, result.stderr)
        return result.stdout
