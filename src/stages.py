"""
Stage transitions of the ImageBasedUpgrade resource.

Each trigger patches .spec.stage; each wait polls the matching condition
until it reaches a terminal reason. The upgrade, rollback and idle waits
are unbounded because their duration is what the harness measures. Only
the Prep wait has a deadline.
"""

import logging
import time
from typing import Optional

from clients import ClusterClient
from errors import (
    ClusterApiError,
    FinalizeFailedError,
    StageTransitionError,
    UpgradeFailedError,
)
from models import Condition, ConditionState, ConditionType, Stage
from timing import ClusterClock

logger = logging.getLogger(__name__)


class StageDriver:
    """Drives the ImageBasedUpgrade object through its stages."""

    def __init__(
        self,
        cluster: ClusterClient,
        clock: ClusterClock,
        poll_interval: int = 10,
        prep_timeout: int = 1200,
        log: Optional[logging.LoggerAdapter] = None,
    ):
        self.cluster = cluster
        self.clock = clock
        self.poll_interval = poll_interval
        self.prep_timeout = prep_timeout
        self.log = log or logger

    def _patch(self, stage: Stage) -> None:
        try:
            self.cluster.patch_stage(stage)
        except ClusterApiError as e:
            raise StageTransitionError(f"Failed to set stage to {stage.value}: {e}") from e
        self.log.info(f"Stage set to {stage.value}")

    def read_condition(self, ctype: ConditionType) -> Condition:
        """
        Read one condition from the live object.

        API errors are expected while the node reboots, so they decode to a
        pending condition instead of failing the wait.
        """
        try:
            resource = self.cluster.get_ibu()
        except ClusterApiError as e:
            self.log.debug(f"Unable to read imagebasedupgrade, will retry: {e}")
            return Condition.pending(ctype)
        return Condition.from_resource(resource, ctype)

    def _poll(self, ctype: ConditionType) -> Condition:
        """Sleep one interval, then read. Returns the first terminal condition."""
        last_reason = None
        while True:
            time.sleep(self.poll_interval)
            condition = self.read_condition(ctype)
            if condition.reason != last_reason:
                self.log.debug(
                    f"{ctype.value}: reason={condition.reason or '<none>'} status={condition.status or '<none>'}"
                )
                last_reason = condition.reason
            if condition.state.is_terminal:
                return condition

    def trigger_upgrade(self) -> int:
        """
        Run the Prep stage and then request the Upgrade stage.

        Returns:
            Cluster timestamp taken just before the Upgrade stage was requested

        Raises:
            StageTransitionError: If a patch fails or Prep does not complete in time
        """
        self._patch(Stage.PREP)
        self._wait_for_prep()
        triggered = self.clock.now()
        self._patch(Stage.UPGRADE)
        return triggered

    def _wait_for_prep(self) -> Condition:
        deadline = time.monotonic() + self.prep_timeout
        while True:
            condition = self.read_condition(ConditionType.PREP_COMPLETED)
            if condition.status == "True":
                self.log.info("Prep stage completed")
                return condition
            if condition.state is ConditionState.FAILED:
                raise StageTransitionError(
                    f"Prep stage failed: {condition.message or condition.reason}"
                )
            if time.monotonic() >= deadline:
                raise StageTransitionError(
                    f"Timed out after {self.prep_timeout}s waiting for PrepCompleted"
                )
            time.sleep(self.poll_interval)

    def trigger_rollback(self) -> int:
        """Request the Rollback stage; returns the cluster trigger timestamp."""
        triggered = self.clock.now()
        self._patch(Stage.ROLLBACK)
        return triggered

    def trigger_idle(self) -> None:
        self._patch(Stage.IDLE)

    def wait_for_upgrade_finish(self) -> Condition:
        """
        Wait for UpgradeCompleted to report Completed.

        Raises:
            UpgradeFailedError: If the condition reports Failed
        """
        while True:
            condition = self._poll(ConditionType.UPGRADE_COMPLETED)
            if condition.state is ConditionState.COMPLETED:
                return condition
            if condition.state is ConditionState.FAILED:
                raise UpgradeFailedError(condition.message or "UpgradeCompleted reason Failed")

    def wait_for_rollback_finish(self) -> Condition:
        """Wait for RollbackCompleted to report Completed."""
        while True:
            condition = self._poll(ConditionType.ROLLBACK_COMPLETED)
            if condition.state is ConditionState.COMPLETED:
                return condition

    def wait_for_idle_finish(self) -> Condition:
        """
        Wait for the Idle condition to report Idle.

        Raises:
            FinalizeFailedError: On FinalizeFailed or AbortFailed
        """
        while True:
            condition = self._poll(ConditionType.IDLE)
            if condition.state is ConditionState.IDLE:
                return condition
            if condition.state in (
                ConditionState.FINALIZE_FAILED,
                ConditionState.ABORT_FAILED,
            ):
                self.log.error("Transition to Idle failed")
                raise FinalizeFailedError(
                    f"{condition.reason}: {condition.message}".rstrip(": ")
                )
