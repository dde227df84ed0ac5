"""
Cluster health gate run once before the upgrade loop starts.

The loop only starts from a quiet cluster: the lifecycle agent is running,
the ImageBasedUpgrade object is Idle, and no ClusterOperator or
MachineConfigPool is progressing or degraded.
"""

import logging
import time
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from clients import ClusterClient
from errors import ClusterApiError, HarnessError
from models import Condition, ConditionState, ConditionType, Stage

logger = logging.getLogger(__name__)


class CheckStatus(Enum):
    """Status codes for health checks."""

    PASSED = "passed"
    WARNING = "warning"
    FAILED = "failed"


class PreCheckResult:
    """Result of a single health check."""

    def __init__(
        self,
        check_name: str,
        status: CheckStatus,
        message: str,
        details: Optional[Dict] = None,
    ):
        self.check_name = check_name
        self.status = status
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict:
        """Convert to dictionary for logging/reporting."""
        return {
            "check_name": self.check_name,
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


def _condition_status(obj: Dict, ctype: str) -> str:
    for cond in (obj.get("status") or {}).get("conditions") or []:
        if cond.get("type") == ctype:
            return str(cond.get("status", ""))
    return ""


def _unsettled(items: List[Dict], expected: Dict[str, str]) -> List[str]:
    """Names of objects whose conditions do not match the expected statuses."""
    bad = []
    for item in items:
        name = (item.get("metadata") or {}).get("name", "<unknown>")
        for ctype, want in expected.items():
            if _condition_status(item, ctype) != want:
                bad.append(f"{name} ({ctype}!={want})")
                break
    return bad


class SystemHealthCheck:
    """Verifies the cluster is ready for an upgrade cycle."""

    def __init__(
        self,
        cluster: ClusterClient,
        timeout: int = 1800,
        interval: int = 5,
        log: Optional[logging.LoggerAdapter] = None,
    ):
        self.cluster = cluster
        self.timeout = timeout
        self.interval = interval
        self.log = log or logger

    def _check_lca(self) -> PreCheckResult:
        replicas = self.cluster.get_lca_available_replicas()
        if replicas > 0:
            return PreCheckResult(
                "lca_available",
                CheckStatus.PASSED,
                "Lifecycle agent is available",
                details={"available_replicas": replicas},
            )
        return PreCheckResult(
            "lca_available", CheckStatus.FAILED, "Lifecycle agent has no available replicas"
        )

    def _check_ibu_idle(self) -> PreCheckResult:
        try:
            ibu = self.cluster.get_ibu()
        except ClusterApiError as e:
            if e.status == 404:
                return PreCheckResult(
                    "ibu_idle", CheckStatus.FAILED, "ImageBasedUpgrade object not found"
                )
            raise

        stage = (ibu.get("spec") or {}).get("stage", "")
        idle = Condition.from_resource(ibu, ConditionType.IDLE)
        details = {"stage": stage, "idle_reason": idle.reason}
        if stage != Stage.IDLE.value:
            return PreCheckResult(
                "ibu_idle", CheckStatus.FAILED, f"Stage is {stage or '<unset>'}", details
            )
        if idle.state is not ConditionState.IDLE:
            return PreCheckResult(
                "ibu_idle",
                CheckStatus.FAILED,
                f"Idle condition reason is {idle.reason or '<unset>'}",
                details,
            )
        return PreCheckResult("ibu_idle", CheckStatus.PASSED, "ImageBasedUpgrade is Idle", details)

    def _check_cluster_operators(self) -> PreCheckResult:
        bad = _unsettled(
            self.cluster.list_cluster_operators(),
            {"Available": "True", "Progressing": "False", "Degraded": "False"},
        )
        if bad:
            return PreCheckResult(
                "cluster_operators",
                CheckStatus.FAILED,
                f"{len(bad)} operator(s) not stable",
                details={"unstable": bad},
            )
        return PreCheckResult("cluster_operators", CheckStatus.PASSED, "All operators stable")

    def _check_machine_config_pools(self) -> PreCheckResult:
        bad = _unsettled(
            self.cluster.list_machine_config_pools(),
            {"Updated": "True", "Updating": "False", "Degraded": "False"},
        )
        if bad:
            return PreCheckResult(
                "machine_config_pools",
                CheckStatus.FAILED,
                f"{len(bad)} pool(s) not updated",
                details={"unstable": bad},
            )
        return PreCheckResult(
            "machine_config_pools", CheckStatus.PASSED, "All MachineConfigPools updated"
        )

    def run_checks(self) -> Tuple[bool, List[PreCheckResult]]:
        """
        Run every health check once.

        Returns:
            Tuple of (passed, list of PreCheckResult)
            passed=True only if no check FAILED
        """
        checks: List[PreCheckResult] = []
        steps: List[Tuple[str, Callable[[], PreCheckResult]]] = [
            ("lca_available", self._check_lca),
            ("ibu_idle", self._check_ibu_idle),
            ("cluster_operators", self._check_cluster_operators),
            ("machine_config_pools", self._check_machine_config_pools),
        ]
        for name, step in steps:
            try:
                result = step()
            except ClusterApiError as e:
                result = PreCheckResult(name, CheckStatus.FAILED, f"API error: {e}")
            checks.append(result)
            self.log.debug(f"Health check {result.check_name}: {result.status.value} - {result.message}")

        has_failures = any(c.status == CheckStatus.FAILED for c in checks)
        return not has_failures, checks

    def wait_until_healthy(self) -> List[PreCheckResult]:
        """
        Poll the health checks until they all pass.

        Raises:
            HarnessError: If the cluster is not healthy within the timeout
        """
        self.log.info(f"Verifying system health (max {self.timeout}s)")
        start = time.monotonic()
        while True:
            passed, checks = self.run_checks()
            if passed:
                self.log.info("System is healthy")
                return checks

            elapsed = time.monotonic() - start
            failed = [c for c in checks if c.status == CheckStatus.FAILED]
            if elapsed >= self.timeout:
                for c in failed:
                    self.log.error(f"Health check {c.check_name} failed: {c.message}")
                raise HarnessError(
                    "System health check failed: "
                    + "; ".join(f"{c.check_name}: {c.message}" for c in failed)
                )
            self.log.info(
                f"Waiting for system health ({elapsed:.0f}s elapsed): "
                + ", ".join(c.check_name for c in failed)
            )
            time.sleep(self.interval)
