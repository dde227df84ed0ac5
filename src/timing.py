"""
Cluster timestamps and folding of phase durations into run statistics.
"""

import logging
from typing import Optional

from errors import HarnessError
from models import Condition, PhaseTiming, StatisticsAccumulator
from remote import RemoteExecutor
from retry import RetryPolicy
from summary import format_duration

logger = logging.getLogger(__name__)


def _positive_int(output: str) -> int:
    value = int(output.strip())
    if value <= 0:
        raise ValueError(f"expected a positive timestamp, got {value}")
    return value


class ClusterClock:
    """Reads wall-clock and boot-related timestamps from the node."""

    def __init__(
        self,
        remote: RemoteExecutor,
        retry: RetryPolicy,
        log: Optional[logging.LoggerAdapter] = None,
    ):
        self.remote = remote
        self.retry = retry
        self.log = log or logger

    def now(self) -> int:
        """Current epoch seconds on the node."""
        return self.retry.call(
            lambda: _positive_int(self.remote.check_output("date +%s")),
            "read the current timestamp",
            log=self.log,
        )

    def init_timestamp(self) -> int:
        # ctime of /proc is set when procfs is mounted at boot
        return self.retry.call(
            lambda: _positive_int(self.remote.check_output("stat -c %Z /proc")),
            "read the cluster init timestamp",
            log=self.log,
        )


class TimingAggregator:
    """Builds phase timings and adds them to the run statistics."""

    def __init__(
        self,
        clock: ClusterClock,
        stats: StatisticsAccumulator,
        log: Optional[logging.LoggerAdapter] = None,
    ):
        self.clock = clock
        self.stats = stats
        self.log = log or logger

    def complete_phase(self, triggered: int, condition: Condition) -> PhaseTiming:
        """
        Collect the timestamps of a phase that just finished.

        Args:
            triggered: Cluster timestamp taken when the stage was requested
            condition: Terminal condition whose lastTransitionTime marks completion

        Returns:
            PhaseTiming for the phase

        Raises:
            HarnessError: If the condition carries no transition time
        """
        if condition.last_transition_time is None:
            raise HarnessError(
                f"{condition.type.value} condition has no lastTransitionTime"
            )
        return PhaseTiming(
            triggered=triggered,
            cluster_init=self.clock.init_timestamp(),
            completed=condition.last_transition_time,
        )

    def fold_upgrade(self, timing: PhaseTiming) -> None:
        self.stats.add_upgrade(timing)
        self._log_timing("Upgrade", timing)

    def fold_rollback(self, timing: PhaseTiming) -> None:
        self.stats.add_rollback(timing)
        self._log_timing("Rollback", timing)

    def _log_timing(self, phase: str, timing: PhaseTiming) -> None:
        self.log.info(f"{phase} duration: {format_duration(timing.duration)}")
        self.log.info(
            f"{phase} duration: {format_duration(timing.since_init)} (from cluster init)"
        )
        self.log.info(f"{phase} reboot:   {format_duration(timing.reboot)}")
