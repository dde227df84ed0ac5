"""
Exception types for the IBU loop harness.
"""


class HarnessError(RuntimeError):
    """A problem with the harness itself; always halts the run."""


class ConfigError(HarnessError):
    """Missing or invalid configuration at startup."""


class ClusterApiError(HarnessError):
    """A cluster API call failed after client-side retries."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


class RemoteCommandError(HarnessError):
    """A remote command exited non-zero or could not be run."""

    def __init__(self, command: str, returncode: int, stderr: str = ""):
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"Remote command failed (rc={returncode}): {command}{detail}")
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class RetryExhaustedError(HarnessError):
    """All attempts of a retried operation failed."""


class StageTransitionError(HarnessError):
    """A stage patch failed, or the Prep stage did not complete."""


class UpgradeFailedError(Exception):
    """The UpgradeCompleted condition reported Failed."""


class FinalizeFailedError(Exception):
    """The transition back to Idle reported FinalizeFailed or AbortFailed."""
