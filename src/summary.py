"""
End-of-run summary for the IBU loop harness.
"""

import json
import logging
import signal
import time
from dataclasses import asdict
from datetime import datetime
from typing import List, Optional

from models import RunState, SeriesStats

logger = logging.getLogger(__name__)

SERIES_TITLES = [
    ("upgrade_total", "Upgrade stage completion times, including reboot"),
    ("upgrade_since_init", "Upgrade stage completion times, from cluster init"),
    ("upgrade_reboot", "Upgrade reboot times, from Upgrade trigger to cluster init"),
    ("rollback_total", "Rollback stage completion times, including reboot"),
    ("rollback_since_init", "Rollback stage completion times, from cluster init"),
    ("rollback_reboot", "Rollback reboot times, from Rollback trigger to cluster init"),
]


def format_duration(total: Optional[int]) -> str:
    """Format seconds as H:MM:SS, or M:SS when under an hour."""
    if total is None:
        return "n/a"
    total = int(total)
    if total < 0:
        return "-" + format_duration(-total)
    hours = total // 3600
    mins = total // 60 % 60
    secs = total % 60
    if hours:
        return f"{hours}:{mins:02d}:{secs:02d}"
    return f"{mins}:{secs:02d}"


def _series_lines(title: str, series: SeriesStats) -> List[str]:
    return [
        f"{title}:",
        f"    High:    {format_duration(series.high)}",
        f"    Low:     {format_duration(series.low)}",
        f"    Average: {format_duration(series.average)}",
        "",
    ]


def format_summary(state: RunState) -> List[str]:
    """Build the summary lines. Depends only on the given state."""
    counters = state.counters
    if counters.cycles_completed == 0:
        lines = []
        if state.halt_reason:
            lines.append(f"Execution halted due to: {state.halt_reason}")
        lines.append("Exiting with no completed upgrades")
        return lines

    loops = counters.iterations
    lines = [
        "#" * 57,
        "Summary:",
        "",
        f"Upgrades completed: {counters.cycles_completed}",
        "",
        f"Upgrades with static pod revision rollouts: {counters.rollouts} in {loops} loop(s)",
        f"Upgrades with additional reboots detected:  {counters.reboots} in {loops} loop(s)",
        f"Upgrades needing the SRIOV workaround:      {counters.workarounds} in {loops} loop(s)",
        "",
    ]
    series = state.stats.series()
    for key, title in SERIES_TITLES:
        lines.extend(_series_lines(title, series[key]))

    if state.halt_reason:
        lines.append(f"Execution halted due to: {state.halt_reason}")
    return lines


def build_report(state: RunState, end_time: Optional[float] = None) -> dict:
    """Machine-readable form of the summary."""
    end_time = end_time if end_time is not None else time.time()
    return {
        "start_time": (
            datetime.fromtimestamp(state.start_time).isoformat()
            if state.start_time
            else None
        ),
        "end_time": datetime.fromtimestamp(end_time).isoformat(),
        "halt_reason": state.halt_reason,
        "exit_code": state.exit_code,
        "counters": asdict(state.counters),
        "statistics": {
            name: stats.to_dict() for name, stats in state.stats.series().items()
        },
    }


class SummaryReporter:
    """
    Prints the run summary exactly once when the guarded block exits.

    Entered once at startup. Termination signals are turned into SystemExit
    so the summary is still printed when the run is interrupted mid-wait.
    """

    HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)

    def __init__(
        self,
        state: RunState,
        report_json: Optional[str] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.state = state
        self.report_json = report_json
        self.log = log or logger
        self._reported = False
        self._previous_handlers = {}

    def __enter__(self) -> "SummaryReporter":
        for sig in self.HANDLED_SIGNALS:
            self._previous_handlers[sig] = signal.signal(sig, self._on_signal)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        for sig, handler in self._previous_handlers.items():
            signal.signal(sig, handler)
        self._previous_handlers = {}

        if exc_type is not None and not issubclass(exc_type, SystemExit):
            self.state.halt(f"Unexpected error: {exc}", 1)
        self.report()
        return False

    def _on_signal(self, signum, frame):
        name = signal.Signals(signum).name
        self.state.halt(f"Interrupted by {name}", 128 + signum)
        raise SystemExit(128 + signum)

    def report(self) -> None:
        if self._reported:
            return
        self._reported = True

        for line in format_summary(self.state):
            self.log.info(line)

        if self.report_json:
            self._export_json(self.report_json)

    def _export_json(self, path: str) -> None:
        try:
            with open(path, "w") as f:
                json.dump(build_report(self.state), f, indent=2)
        except OSError as e:
            self.log.error(f"Failed to write report to {path}: {e}")
            return
        self.log.info(f"Detailed report exported to: {path}")
