"""
Unit tests for the stage driver.
"""

import unittest
from unittest.mock import MagicMock, call, patch

from errors import (
    ClusterApiError,
    FinalizeFailedError,
    StageTransitionError,
    UpgradeFailedError,
)
from models import ConditionState, ConditionType, Stage
from stages import StageDriver


def ibu(ctype=None, reason=None, status="False", ltt="2024-05-01T10:00:00Z"):
    conditions = []
    if ctype:
        conditions.append(
            {
                "type": ctype,
                "reason": reason,
                "status": status,
                "lastTransitionTime": ltt,
            }
        )
    return {"spec": {}, "status": {"conditions": conditions}}


@patch("stages.time.sleep")
class TestStageDriver(unittest.TestCase):
    """Test stage patches and condition waits."""

    def setUp(self):
        self.cluster = MagicMock()
        self.clock = MagicMock()
        self.clock.now.return_value = 1700000000
        self.driver = StageDriver(self.cluster, self.clock, poll_interval=10, prep_timeout=1200)

    def test_trigger_upgrade(self, mock_sleep):
        self.cluster.get_ibu.side_effect = [
            ibu("PrepCompleted", "InProgress", "False"),
            ibu("PrepCompleted", "Completed", "True"),
        ]
        triggered = self.driver.trigger_upgrade()

        self.assertEqual(triggered, 1700000000)
        self.assertEqual(
            self.cluster.patch_stage.call_args_list, [call(Stage.PREP), call(Stage.UPGRADE)]
        )
        mock_sleep.assert_called_once_with(10)

    def test_trigger_upgrade_patch_failure(self, mock_sleep):
        self.cluster.patch_stage.side_effect = ClusterApiError("forbidden", status=403)
        with self.assertRaises(StageTransitionError):
            self.driver.trigger_upgrade()
        self.clock.now.assert_not_called()

    def test_trigger_upgrade_prep_failed(self, mock_sleep):
        self.cluster.get_ibu.return_value = ibu("PrepCompleted", "Failed", "False")
        with self.assertRaises(StageTransitionError):
            self.driver.trigger_upgrade()
        self.cluster.patch_stage.assert_called_once_with(Stage.PREP)

    @patch("stages.time.monotonic")
    def test_trigger_upgrade_prep_timeout(self, mock_monotonic, mock_sleep):
        mock_monotonic.side_effect = [0.0, 600.0, 1200.0]
        self.cluster.get_ibu.return_value = ibu("PrepCompleted", "InProgress", "False")
        with self.assertRaises(StageTransitionError) as ctx:
            self.driver.trigger_upgrade()
        self.assertIn("1200s", str(ctx.exception))
        self.assertNotIn(call(Stage.UPGRADE), self.cluster.patch_stage.call_args_list)

    def test_trigger_rollback_records_timestamp(self, mock_sleep):
        self.assertEqual(self.driver.trigger_rollback(), 1700000000)
        self.cluster.patch_stage.assert_called_once_with(Stage.ROLLBACK)

    def test_trigger_idle(self, mock_sleep):
        self.driver.trigger_idle()
        self.cluster.patch_stage.assert_called_once_with(Stage.IDLE)

    def test_wait_for_upgrade_finish_completed(self, mock_sleep):
        self.cluster.get_ibu.side_effect = [
            ibu(),
            ClusterApiError("connection refused"),
            ibu("UpgradeCompleted", "InProgress"),
            ibu("UpgradeCompleted", "Completed", "True"),
        ]
        condition = self.driver.wait_for_upgrade_finish()

        self.assertIs(condition.state, ConditionState.COMPLETED)
        self.assertEqual(condition.last_transition_time, 1714557600)
        self.assertEqual(mock_sleep.call_count, 4)

    def test_wait_for_upgrade_finish_failed(self, mock_sleep):
        self.cluster.get_ibu.side_effect = [
            ibu("UpgradeCompleted", "InProgress"),
            ibu("UpgradeCompleted", "Failed"),
        ]
        with self.assertRaises(UpgradeFailedError):
            self.driver.wait_for_upgrade_finish()

    def test_wait_for_rollback_finish(self, mock_sleep):
        self.cluster.get_ibu.side_effect = [
            ibu("RollbackCompleted", "InProgress"),
            ibu("RollbackCompleted", "Completed", "True"),
        ]
        condition = self.driver.wait_for_rollback_finish()
        self.assertEqual(condition.type, ConditionType.ROLLBACK_COMPLETED)

    def test_wait_for_idle_finish(self, mock_sleep):
        self.cluster.get_ibu.side_effect = [
            ibu("Idle", "Finalizing"),
            ibu("Idle", "Idle", "True"),
        ]
        condition = self.driver.wait_for_idle_finish()
        self.assertIs(condition.state, ConditionState.IDLE)

    def test_wait_for_idle_finish_finalize_failed(self, mock_sleep):
        for reason in ("FinalizeFailed", "AbortFailed"):
            self.cluster.get_ibu.side_effect = [ibu("Idle", reason)]
            with self.assertRaises(FinalizeFailedError):
                self.driver.wait_for_idle_finish()


if __name__ == "__main__":
    unittest.main()
