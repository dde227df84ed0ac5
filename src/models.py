"""
Data models for the IBU loop harness.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)


class Stage(Enum):
    """Values accepted by the ImageBasedUpgrade .spec.stage field."""

    IDLE = "Idle"
    PREP = "Prep"
    UPGRADE = "Upgrade"
    ROLLBACK = "Rollback"


class ConditionType(Enum):
    """Condition types reported in .status.conditions[]."""

    PREP_COMPLETED = "PrepCompleted"
    UPGRADE_COMPLETED = "UpgradeCompleted"
    ROLLBACK_COMPLETED = "RollbackCompleted"
    IDLE = "Idle"


class ConditionState(Enum):
    """Decoded condition reason. PENDING covers absent and in-progress."""

    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"
    IDLE = "Idle"
    FINALIZE_FAILED = "FinalizeFailed"
    ABORT_FAILED = "AbortFailed"

    @classmethod
    def from_reason(cls, reason: Optional[str]) -> "ConditionState":
        if not reason:
            return cls.PENDING
        for state in cls:
            if state is not cls.PENDING and state.value == reason:
                return state
        return cls.PENDING

    @property
    def is_terminal(self) -> bool:
        return self is not ConditionState.PENDING


def parse_timestamp(value: Optional[str]) -> Optional[int]:
    """Convert an RFC 3339 timestamp (as written by the API server) to epoch seconds."""
    if not value:
        return None
    try:
        parsed = datetime.strptime(value, "%Y-%m-%dT%H:%M:%SZ").replace(
            tzinfo=timezone.utc
        )
    except ValueError:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Unparseable timestamp: {value!r}")
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


@dataclass(frozen=True)
class Condition:
    """A single entry of the ImageBasedUpgrade condition list."""

    type: ConditionType
    reason: str = ""
    status: str = ""
    message: str = ""
    last_transition_time: Optional[int] = None

    @property
    def state(self) -> ConditionState:
        return ConditionState.from_reason(self.reason)

    @classmethod
    def pending(cls, ctype: ConditionType) -> "Condition":
        return cls(type=ctype)

    @classmethod
    def from_resource(cls, resource: Optional[Dict], ctype: ConditionType) -> "Condition":
        """
        Extract the condition of the given type from a raw resource.

        Args:
            resource: ImageBasedUpgrade object as returned by the API, or None
            ctype: Condition type to look up

        Returns:
            Condition; a pending one if the resource or entry is missing
        """
        if not resource:
            return cls.pending(ctype)
        conditions = (resource.get("status") or {}).get("conditions") or []
        for entry in conditions:
            if entry.get("type") == ctype.value:
                return cls(
                    type=ctype,
                    reason=entry.get("reason") or "",
                    status=entry.get("status") or "",
                    message=entry.get("message") or "",
                    last_transition_time=parse_timestamp(
                        entry.get("lastTransitionTime")
                    ),
                )
        return cls.pending(ctype)


@dataclass(frozen=True, order=True)
class StaticPodRevision:
    """Revision label of one static pod manifest."""

    app: str
    revision: str


@dataclass(frozen=True)
class SeedBaseline:
    """Static pod revisions shipped in the seed image."""

    image: str
    version: str
    revisions: Tuple[StaticPodRevision, ...]

    @classmethod
    def build(
        cls, image: str, version: str, revisions: Iterable[StaticPodRevision]
    ) -> "SeedBaseline":
        return cls(image=image, version=version, revisions=tuple(sorted(set(revisions))))

    def revision_of(self, app: str) -> Optional[str]:
        for item in self.revisions:
            if item.app == app:
                return item.revision
        return None


@dataclass
class PhaseTiming:
    """Cluster timestamps (epoch seconds) of one upgrade or rollback phase."""

    triggered: int
    cluster_init: int
    completed: int

    @property
    def duration(self) -> int:
        return self.completed - self.triggered

    @property
    def since_init(self) -> int:
        return self.completed - self.cluster_init

    @property
    def reboot(self) -> int:
        return self.cluster_init - self.triggered


@dataclass
class IterationRecord:
    """Timings collected during one pass of the loop."""

    pass_number: int
    upgrade: Optional[PhaseTiming] = None
    rollback: Optional[PhaseTiming] = None


@dataclass
class SeriesStats:
    """Running low/high/sum watermarks of one duration series."""

    low: Optional[int] = None
    high: Optional[int] = None
    total: int = 0
    count: int = 0

    def add(self, sample: int) -> None:
        if self.low is None or sample < self.low:
            self.low = sample
        if self.high is None or sample > self.high:
            self.high = sample
        self.total += sample
        self.count += 1

    @property
    def average(self) -> Optional[int]:
        if not self.count:
            return None
        return self.total // self.count

    def to_dict(self) -> Dict:
        return {
            "low": self.low,
            "high": self.high,
            "total": self.total,
            "count": self.count,
            "average": self.average,
        }


@dataclass
class StatisticsAccumulator:
    """Duration series for the upgrade and rollback phases."""

    upgrade_total: SeriesStats = field(default_factory=SeriesStats)
    upgrade_since_init: SeriesStats = field(default_factory=SeriesStats)
    upgrade_reboot: SeriesStats = field(default_factory=SeriesStats)
    rollback_total: SeriesStats = field(default_factory=SeriesStats)
    rollback_since_init: SeriesStats = field(default_factory=SeriesStats)
    rollback_reboot: SeriesStats = field(default_factory=SeriesStats)

    def add_upgrade(self, timing: PhaseTiming) -> None:
        self.upgrade_total.add(timing.duration)
        self.upgrade_since_init.add(timing.since_init)
        self.upgrade_reboot.add(timing.reboot)

    def add_rollback(self, timing: PhaseTiming) -> None:
        self.rollback_total.add(timing.duration)
        self.rollback_since_init.add(timing.since_init)
        self.rollback_reboot.add(timing.reboot)

    def series(self) -> Dict[str, SeriesStats]:
        return {
            "upgrade_total": self.upgrade_total,
            "upgrade_since_init": self.upgrade_since_init,
            "upgrade_reboot": self.upgrade_reboot,
            "rollback_total": self.rollback_total,
            "rollback_since_init": self.rollback_since_init,
            "rollback_reboot": self.rollback_reboot,
        }


@dataclass
class LoopCounters:
    """Per-run iteration and anomaly counters."""

    iterations: int = 0
    workarounds: int = 0
    rollouts: int = 0
    reboots: int = 0
    cycles_completed: int = 0


@dataclass
class RunState:
    """Everything the summary needs; lives for the whole run."""

    stats: StatisticsAccumulator = field(default_factory=StatisticsAccumulator)
    counters: LoopCounters = field(default_factory=LoopCounters)
    halt_reason: Optional[str] = None
    exit_code: int = 0
    start_time: Optional[float] = None

    def halt(self, reason: str, exit_code: int) -> None:
        """Record why the run stopped. Only the first call takes effect."""
        if self.halt_reason is not None:
            logger.debug(
                f"Ignoring halt reason {reason!r}; already halted: {self.halt_reason!r}"
            )
            return
        self.halt_reason = reason
        self.exit_code = exit_code
