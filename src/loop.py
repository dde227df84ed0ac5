"""
Upgrade loop controller.

Runs Prep -> Upgrade -> Rollback -> Idle cycles against a single-node
cluster until an upgrade fails, an anomaly the user asked to halt on is
detected, or the loop or time budget is used up.
"""

import logging
import time
from typing import Optional

from clients import ClusterClient
from config import LoopConfig
from detectors import (
    RebootDetector,
    RolloutDetector,
    SriovWorkaroundDetector,
    capture_seed_baseline,
)
from errors import (
    FinalizeFailedError,
    HarnessError,
    StageTransitionError,
    UpgradeFailedError,
)
from health import SystemHealthCheck
from log_utils import PassLogger
from models import IterationRecord, RunState
from remote import RemoteExecutor
from retry import RetryPolicy
from stages import StageDriver
from summary import format_duration
from timing import ClusterClock, TimingAggregator

logger = logging.getLogger(__name__)


def resolve_node(config: LoopConfig, cluster: ClusterClient) -> str:
    """
    Return the node to ssh to, asking the cluster when none was given.

    Raises:
        HarnessError: If no hostname can be determined
    """
    if config.node:
        return config.node
    host = cluster.get_node_hostname()
    if not host:
        raise HarnessError("Unable to determine hostname")
    logger.info(f"Using node {host}")
    return host


class LoopController:
    """Owns the iteration counter and the halt policy."""

    def __init__(
        self,
        config: LoopConfig,
        state: RunState,
        cluster: ClusterClient,
        remote: RemoteExecutor,
    ):
        self.config = config
        self.state = state
        self.cluster = cluster
        self.remote = remote
        self.log = PassLogger(logger, state.counters)

        retry = RetryPolicy(attempts=config.retry_attempts, delay=config.retry_delay)
        self.clock = ClusterClock(remote, retry, log=self.log)
        self.stages = StageDriver(
            cluster,
            self.clock,
            poll_interval=config.poll_interval,
            prep_timeout=config.prep_timeout,
            log=self.log,
        )
        self.timing = TimingAggregator(self.clock, state.stats, log=self.log)
        self.health = SystemHealthCheck(
            cluster,
            timeout=config.health_timeout,
            interval=config.health_interval,
            log=self.log,
        )
        self.reboots = RebootDetector(remote, retry, log=self.log)
        self.sriov = SriovWorkaroundDetector(cluster, log=self.log)
        self.rollouts: Optional[RolloutDetector] = None
        self._started: Optional[float] = None

    def _log_settings(self) -> None:
        cfg = self.config
        logger.info("=" * 70)
        logger.info("Image Based Upgrade loop")
        logger.info("=" * 70)
        logger.info(f"Node: {self.remote.host}")
        logger.info(f"Max loops: {cfg.max_loops or 'unlimited'}")
        logger.info(f"Time limit: {f'{cfg.hours} hour(s)' if cfg.hours else 'none'}")
        logger.info(f"Halt on rollout: {cfg.halt_on_rollout}")
        logger.info(f"Halt on additional reboots: {cfg.halt_on_reboot}")
        logger.info(f"Halt on SRIOV workaround: {cfg.halt_on_sriov}")
        logger.info(f"Poll interval: {cfg.poll_interval}s")
        logger.info("=" * 70)

    def _halt(self, reason: str, exit_code: int, error: Optional[BaseException] = None) -> bool:
        if error is not None:
            self.log.error(f"{reason}: {error}")
        elif exit_code:
            self.log.error(reason)
        else:
            self.log.info(reason)
        self.state.halt(reason, exit_code)
        return False

    def run(self) -> int:
        """
        Run loops until a halt condition is met.

        Returns:
            Process exit code: 0 for a voluntary stop, 1 for any failure
        """
        self.state.start_time = time.time()
        self._started = time.monotonic()
        self._log_settings()

        try:
            self.health.wait_until_healthy()
            baseline = capture_seed_baseline(self.cluster, self.remote, log=self.log)
            self.rollouts = RolloutDetector(self.cluster, self.remote, baseline, log=self.log)

            while self._run_iteration():
                self.log.info("Waiting to start next loop")
                time.sleep(self.config.poll_interval)
        except HarnessError as e:
            self._halt(str(e), 1)

        return self.state.exit_code

    def _run_iteration(self) -> bool:
        """One full cycle. Returns False once a halt reason is recorded."""
        counters = self.state.counters
        counters.iterations += 1
        record = IterationRecord(pass_number=counters.iterations)

        self.log.info("Triggering upgrade")
        try:
            upgrade_triggered = self.stages.trigger_upgrade()
        except StageTransitionError as e:
            return self._halt("Failed to trigger upgrade", 1, e)

        self.log.info("Waiting for upgrade to finish")
        try:
            upgrade_completed = self.stages.wait_for_upgrade_finish()
        except UpgradeFailedError as e:
            return self._halt("Upgrade failed", 1, e)
        record.upgrade = self.timing.complete_phase(upgrade_triggered, upgrade_completed)

        # Every check runs before any halt decision so the counters stay complete
        self.log.info("Upgrade successful. Checking for SRIOV workaround")
        workaround = self.sriov.check()
        if workaround:
            self.log.info("Annotation found")
            counters.workarounds += 1
        else:
            self.log.info("Workaround was not required")

        self.log.info("Checking for revisions")
        rollout = self.rollouts.check()
        if rollout.detected:
            counters.rollouts += 1

        self.log.info("Checking for additional reboots")
        reboot = self.reboots.check()
        if reboot.detected:
            counters.reboots += 1
            self.log.warning("Upgrade timings of this pass are excluded from statistics")
        else:
            self.timing.fold_upgrade(record.upgrade)

        if reboot.detected and self.config.halt_on_reboot:
            return self._halt("Additional reboots detected", 1)
        if rollout.detected and self.config.halt_on_rollout:
            return self._halt("Halt requested due to rollout detection", 1)
        if workaround and self.config.halt_on_sriov:
            return self._halt("Halt requested due to SRIOV workaround detection", 1)

        self.log.info("Triggering rollback")
        try:
            rollback_triggered = self.stages.trigger_rollback()
        except StageTransitionError as e:
            return self._halt("Failed to trigger rollback", 1, e)

        self.log.info("Waiting for rollback to finish")
        rollback_completed = self.stages.wait_for_rollback_finish()
        record.rollback = self.timing.complete_phase(rollback_triggered, rollback_completed)
        self.timing.fold_rollback(record.rollback)

        self.log.info("Rollback successful. Triggering cleanup")
        try:
            self.stages.trigger_idle()
        except StageTransitionError as e:
            return self._halt("Failed to trigger transition to Idle", 1, e)

        self.log.info("Waiting for finalize to finish")
        try:
            self.stages.wait_for_idle_finish()
        except FinalizeFailedError as e:
            return self._halt("Finalize failed", 1, e)

        counters.cycles_completed += 1
        self.log.info(f"SRIOV workaround was needed {counters.workarounds} loop(s) so far")
        self.log.info(f"Static pod rollouts occurred during {counters.rollouts} loop(s) so far")
        self.log.info(f"Additional reboots detected during {counters.reboots} loop(s) so far")

        return self._check_budget()

    def _check_budget(self) -> bool:
        """Voluntary stop conditions, evaluated after a full cycle."""
        cfg = self.config
        if cfg.max_loops and self.state.counters.cycles_completed >= cfg.max_loops:
            return self._halt(f"Maximum loops reached ({cfg.max_loops})", 0)

        budget = cfg.time_budget_seconds
        if budget:
            elapsed = time.monotonic() - self._started
            if elapsed >= budget:
                return self._halt(
                    f"Halting after {format_duration(int(elapsed))} total, "
                    f"after requested {cfg.hours} hour(s) limit",
                    0,
                )
        return True
