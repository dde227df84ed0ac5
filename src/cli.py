"""Console entry point for the IBU loop harness."""

from __future__ import annotations

import argparse
import logging
from typing import List

from clients import ClusterClient
from config import LoopConfig
from errors import HarnessError
from log_utils import setup_logging
from loop import LoopController, resolve_node
from models import RunState
from remote import RemoteExecutor
from summary import SummaryReporter

logger = logging.getLogger(__name__)


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not an integer")
    if number <= 0:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return number


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description=(
            "Run Image Based Upgrade and rollback in a loop against a single-node "
            "cluster until an upgrade fails."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  # Loop until failure, halting on static pod rollouts\n"
            "  ibu-loops --ssh-key ~/.ssh/id_rsa --rollout\n\n"
            "  # Run 10 cycles, tolerating extra reboots\n"
            "  ibu-loops --max-loops 10 --ignore-reboots\n\n"
            "  # Stop after the first cycle that ends past 12 hours\n"
            "  ibu-loops --hours 12 --report-json ibu-report.json\n"
        ),
    )
    parser.add_argument("-k", "--ssh-key", help="ssh key to use for ssh to the node")
    parser.add_argument(
        "-n",
        "--node",
        help="Node hostname (default: first Hostname address from the node list)",
    )
    parser.add_argument("--ssh-user", default="core", help="Remote user (default: core)")
    parser.add_argument(
        "--kubeconfig",
        help="Path to kubeconfig (default: $KUBECONFIG)",
    )

    halting = parser.add_argument_group("halt conditions")
    halting.add_argument(
        "-r", "--rollout", action="store_true", help="Halt if a rollout is detected"
    )
    halting.add_argument(
        "-i",
        "--ignore-reboots",
        action="store_true",
        help="Do not halt when additional reboots are detected",
    )
    halting.add_argument(
        "--sriov",
        action="store_true",
        help="Halt if the SRIOV reconciler workaround annotation is detected",
    )
    halting.add_argument(
        "-m",
        "--max-loops",
        type=_positive_int,
        metavar="N",
        help="Maximum number of upgrade loops to run",
    )
    halting.add_argument(
        "--hours",
        type=_positive_int,
        metavar="N",
        help="Halt once a completed loop has exceeded the overall time specified",
    )

    timing = parser.add_argument_group("timing")
    timing.add_argument(
        "--poll-interval",
        type=_positive_int,
        default=10,
        metavar="SECONDS",
        help="Time between condition checks (default: 10)",
    )
    timing.add_argument(
        "--prep-timeout",
        type=_positive_int,
        default=1200,
        metavar="SECONDS",
        help="Maximum wait for the Prep stage to complete (default: 1200)",
    )
    timing.add_argument(
        "--health-timeout",
        type=_positive_int,
        default=1800,
        metavar="SECONDS",
        help="Maximum wait for the cluster to become healthy before starting (default: 1800)",
    )

    output = parser.add_argument_group("logging and output")
    output.add_argument("--report-json", metavar="PATH", help="Write the final statistics as JSON")
    output.add_argument(
        "--log-file", default="ibu-loops.log", help="Log file (default: ibu-loops.log)"
    )
    output.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: List[str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    setup_logging(verbose=args.verbose, log_file=args.log_file)

    state = RunState()
    with SummaryReporter(state, report_json=args.report_json):
        try:
            config = LoopConfig.from_args(args)
            cluster = ClusterClient(kubeconfig=config.kubeconfig)
            node = resolve_node(config, cluster)
            remote = RemoteExecutor(host=node, user=config.ssh_user, ssh_key=config.ssh_key)
            LoopController(config, state, cluster, remote).run()
        except HarnessError as e:
            logger.error(str(e))
            state.halt(str(e), 1)

    return state.exit_code
