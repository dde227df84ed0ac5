"""
Configuration management for the IBU loop harness.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from errors import ConfigError


@dataclass
class LoopConfig:
    """Configuration for an upgrade loop run."""

    kubeconfig: str
    node: Optional[str] = None
    ssh_key: Optional[str] = None
    ssh_user: str = "core"
    halt_on_rollout: bool = False
    halt_on_reboot: bool = True
    halt_on_sriov: bool = False
    max_loops: Optional[int] = None
    hours: Optional[int] = None
    poll_interval: int = 10
    prep_timeout: int = 1200
    health_timeout: int = 1800
    health_interval: int = 5
    retry_attempts: int = 5
    retry_delay: float = 1.0
    report_json: Optional[str] = None
    verbose: bool = False

    def __post_init__(self):
        if not self.kubeconfig:
            raise ConfigError("KUBECONFIG not set")
        if self.max_loops is not None and self.max_loops <= 0:
            raise ConfigError("--max-loops must be a positive integer")
        if self.hours is not None and self.hours <= 0:
            raise ConfigError("--hours must be positive integer")
        if self.poll_interval <= 0:
            raise ConfigError("--poll-interval must be a positive integer")

    @property
    def time_budget_seconds(self) -> Optional[int]:
        return self.hours * 3600 if self.hours else None

    @classmethod
    def from_args(cls, args, environ: Optional[Mapping[str, str]] = None) -> "LoopConfig":
        """
        Create configuration from command-line arguments.

        Args:
            args: Parsed argparse arguments
            environ: Environment to read KUBECONFIG from (defaults to os.environ)

        Returns:
            LoopConfig instance

        Raises:
            ConfigError: If required settings are missing or invalid
        """
        environ = os.environ if environ is None else environ
        return cls(
            kubeconfig=args.kubeconfig or environ.get("KUBECONFIG", ""),
            node=args.node,
            ssh_key=args.ssh_key,
            ssh_user=args.ssh_user,
            halt_on_rollout=args.rollout,
            halt_on_reboot=not args.ignore_reboots,
            halt_on_sriov=args.sriov,
            max_loops=args.max_loops,
            hours=args.hours,
            poll_interval=args.poll_interval,
            prep_timeout=args.prep_timeout,
            health_timeout=args.health_timeout,
            report_json=args.report_json,
            verbose=args.verbose,
        )
