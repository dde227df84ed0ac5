"""
Unit tests for the pre-loop health gate.
"""

import unittest
from unittest.mock import MagicMock, patch

from errors import ClusterApiError, HarnessError
from health import CheckStatus, PreCheckResult, SystemHealthCheck


def idle_ibu(stage="Idle", reason="Idle"):
    return {
        "spec": {"stage": stage},
        "status": {"conditions": [{"type": "Idle", "reason": reason, "status": "True"}]},
    }


def operator(name, available="True", progressing="False", degraded="False"):
    return {
        "metadata": {"name": name},
        "status": {
            "conditions": [
                {"type": "Available", "status": available},
                {"type": "Progressing", "status": progressing},
                {"type": "Degraded", "status": degraded},
            ]
        },
    }


def pool(name, updated="True", updating="False", degraded="False"):
    return {
        "metadata": {"name": name},
        "status": {
            "conditions": [
                {"type": "Updated", "status": updated},
                {"type": "Updating", "status": updating},
                {"type": "Degraded", "status": degraded},
            ]
        },
    }


class TestPreCheckResult(unittest.TestCase):
    def test_to_dict(self):
        result = PreCheckResult(
            check_name="ibu_idle",
            status=CheckStatus.PASSED,
            message="ImageBasedUpgrade is Idle",
            details={"stage": "Idle"},
        )
        data = result.to_dict()

        self.assertEqual(data["check_name"], "ibu_idle")
        self.assertEqual(data["status"], "passed")
        self.assertEqual(data["details"]["stage"], "Idle")
        self.assertIn("timestamp", data)


class TestSystemHealthCheck(unittest.TestCase):
    def setUp(self):
        self.cluster = MagicMock()
        self.cluster.get_lca_available_replicas.return_value = 1
        self.cluster.get_ibu.return_value = idle_ibu()
        self.cluster.list_cluster_operators.return_value = [operator("etcd")]
        self.cluster.list_machine_config_pools.return_value = [pool("master")]
        self.health = SystemHealthCheck(self.cluster, timeout=30, interval=5)

    def test_all_pass(self):
        passed, checks = self.health.run_checks()
        self.assertTrue(passed)
        self.assertEqual(
            [c.check_name for c in checks],
            ["lca_available", "ibu_idle", "cluster_operators", "machine_config_pools"],
        )

    def test_lca_unavailable(self):
        self.cluster.get_lca_available_replicas.return_value = 0
        passed, checks = self.health.run_checks()
        self.assertFalse(passed)
        self.assertEqual(checks[0].status, CheckStatus.FAILED)

    def test_ibu_not_idle(self):
        self.cluster.get_ibu.return_value = idle_ibu(stage="Upgrade", reason="InProgress")
        passed, checks = self.health.run_checks()
        self.assertFalse(passed)
        self.assertIn("Upgrade", checks[1].message)

    def test_ibu_idle_reason_not_idle(self):
        self.cluster.get_ibu.return_value = idle_ibu(reason="Finalizing")
        passed, checks = self.health.run_checks()
        self.assertFalse(passed)
        self.assertEqual(checks[1].status, CheckStatus.FAILED)

    def test_ibu_missing(self):
        self.cluster.get_ibu.side_effect = ClusterApiError("not found", status=404)
        passed, checks = self.health.run_checks()
        self.assertFalse(passed)
        self.assertEqual(checks[1].message, "ImageBasedUpgrade object not found")

    def test_degraded_operator(self):
        self.cluster.list_cluster_operators.return_value = [
            operator("etcd"),
            operator("kube-apiserver", progressing="True"),
        ]
        passed, checks = self.health.run_checks()
        self.assertFalse(passed)
        self.assertEqual(checks[2].details["unstable"], ["kube-apiserver (Progressing!=False)"])

    def test_updating_pool(self):
        self.cluster.list_machine_config_pools.return_value = [pool("master", updating="True")]
        passed, _ = self.health.run_checks()
        self.assertFalse(passed)

    def test_api_error_fails_check(self):
        self.cluster.list_cluster_operators.side_effect = ClusterApiError("timeout")
        passed, checks = self.health.run_checks()
        self.assertFalse(passed)
        self.assertIn("API error", checks[2].message)

    @patch("health.time.sleep")
    @patch("health.time.monotonic")
    def test_wait_until_healthy_polls(self, mock_monotonic, mock_sleep):
        mock_monotonic.side_effect = [0.0, 5.0, 10.0]
        self.cluster.get_lca_available_replicas.side_effect = [0, 1]
        checks = self.health.wait_until_healthy()

        self.assertEqual(len(checks), 4)
        mock_sleep.assert_called_once_with(5)

    @patch("health.time.sleep")
    @patch("health.time.monotonic")
    def test_wait_until_healthy_timeout(self, mock_monotonic, mock_sleep):
        mock_monotonic.side_effect = [0.0, 10.0, 20.0, 30.0]
        self.cluster.get_lca_available_replicas.return_value = 0
        with self.assertRaises(HarnessError) as ctx:
            self.health.wait_until_healthy()
        self.assertIn("lca_available", str(ctx.exception))
        self.assertEqual(mock_sleep.call_count, 2)


if __name__ == "__main__":
    unittest.main()
