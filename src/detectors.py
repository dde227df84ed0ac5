"""
Per-iteration anomaly checks: static pod rollouts, extra reboots and the
SR-IOV reconciler workaround.
"""

import json
import logging
import shlex
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from clients import ClusterClient
from errors import ClusterApiError, HarnessError, RemoteCommandError
from models import SeedBaseline, StaticPodRevision
from remote import RemoteExecutor
from retry import RetryPolicy

logger = logging.getLogger(__name__)

MANIFEST_LABELS_FILTER = "'.metadata.labels | {app,revision}'"
LIVE_REVISIONS_COMMAND = (
    f"sudo jq -c {MANIFEST_LABELS_FILTER} /etc/kubernetes/manifests/*-pod.yaml"
)
REBOOT_COUNT_COMMAND = "last reboot | grep '^reboot' | grep -v 'still running' | wc -l"
SRIOV_WORKAROUND_MARKER = "kick-reconciler"


def parse_revisions(output: str) -> List[StaticPodRevision]:
    """
    Parse jq output, one {"app": ..., "revision": ...} object per line.

    Raises:
        HarnessError: If a line is not valid JSON
    """
    revisions = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            labels = json.loads(line)
        except json.JSONDecodeError as e:
            raise HarnessError(f"Unparseable static pod label output: {line!r}") from e
        app = labels.get("app")
        if not app:
            logger.debug(f"Skipping static pod manifest without app label: {line}")
            continue
        revision = labels.get("revision")
        revisions.append(
            StaticPodRevision(app=str(app), revision="" if revision is None else str(revision))
        )
    return revisions


def namespace_for_app(app: str) -> str:
    """Namespace holding the installer pods of a control plane component."""
    return app if app.startswith("openshift-") else f"openshift-{app}"


def capture_seed_baseline(
    cluster: ClusterClient,
    remote: RemoteExecutor,
    log: Optional[logging.LoggerAdapter] = None,
) -> SeedBaseline:
    """
    Pull the seed image on the node and read the static pod revisions it ships.

    Raises:
        HarnessError: If any step fails or no revisions are found
    """
    log = log or logger
    log.info("Getting seed information")
    image, version = cluster.get_seed_image_ref()
    if not image:
        raise HarnessError("Failed to get seed image ref")

    quoted = shlex.quote(image)
    log.info(f"Pulling seed image {image}")
    try:
        remote.check_output(f"sudo podman pull {quoted}")
        mount = remote.check_output(f"sudo podman image mount {quoted}").strip()
    except RemoteCommandError as e:
        raise HarnessError(f"Failed to pull and mount seed image: {e}") from e
    if not mount:
        raise HarnessError("Failed to mount image")

    try:
        output = remote.check_output(
            f"sudo tar xzf {shlex.quote(mount)}/etc.tgz -O --wildcards "
            f"'etc/kubernetes/manifests/*-pod.yaml' | jq -c {MANIFEST_LABELS_FILTER}"
        )
    except RemoteCommandError as e:
        raise HarnessError(f"Failed to collect static pod revision info: {e}") from e
    finally:
        for cleanup in (f"sudo podman image unmount {quoted}", f"sudo podman rmi {quoted}"):
            result = remote.run(cleanup)
            if not result.ok:
                log.warning(f"Seed image cleanup failed (rc={result.returncode}): {cleanup}")

    revisions = parse_revisions(output)
    if not revisions:
        raise HarnessError("Failed to collect static pod revision info")

    baseline = SeedBaseline.build(image=image, version=version, revisions=revisions)
    log.info(f"Seed info collected for version {version or 'unknown'}")
    for item in baseline.revisions:
        log.info(f"  {item.app}: revision {item.revision}")
    return baseline


@dataclass
class RevisionChange:
    """A static pod whose live revision differs from the seed image."""

    app: str
    seed_revision: Optional[str]
    cluster_revision: Optional[str]


@dataclass
class RolloutResult:
    detected: bool
    changes: List[RevisionChange] = field(default_factory=list)


def diff_revisions(
    baseline: Iterable[StaticPodRevision], live: Iterable[StaticPodRevision]
) -> List[RevisionChange]:
    """Per-app differences between two revision sets, sorted by app."""
    seed = {item.app: item.revision for item in baseline}
    current = {item.app: item.revision for item in live}
    changes = []
    for app in sorted(set(seed) | set(current)):
        if seed.get(app) != current.get(app):
            changes.append(
                RevisionChange(
                    app=app,
                    seed_revision=seed.get(app),
                    cluster_revision=current.get(app),
                )
            )
    return changes


class RolloutDetector:
    """Compares live static pod revisions against the seed baseline."""

    def __init__(
        self,
        cluster: ClusterClient,
        remote: RemoteExecutor,
        baseline: SeedBaseline,
        log: Optional[logging.LoggerAdapter] = None,
    ):
        self.cluster = cluster
        self.remote = remote
        self.baseline = baseline
        self.log = log or logger

    def live_revisions(self) -> List[StaticPodRevision]:
        try:
            output = self.remote.check_output(LIVE_REVISIONS_COMMAND)
        except RemoteCommandError as e:
            raise HarnessError(f"Failed to collect static pod revision info: {e}") from e
        revisions = parse_revisions(output)
        if not revisions:
            raise HarnessError("Failed to collect static pod revision info")
        return revisions

    def check(self) -> RolloutResult:
        live = self.live_revisions()
        if set(live) == set(self.baseline.revisions):
            self.log.info("No static pod revision updates")
            return RolloutResult(detected=False)

        self.log.warning("Static pod revision update detected")
        changes = diff_revisions(self.baseline.revisions, live)
        for change in changes:
            self.log.warning(
                f"Static pod {change.app} at revision {change.seed_revision} "
                f"in seed image, now at {change.cluster_revision}"
            )
            self._log_installer_pods(change)
        return RolloutResult(detected=True, changes=changes)

    def _log_installer_pods(self, change: RevisionChange) -> None:
        if not change.cluster_revision:
            return
        namespace = namespace_for_app(change.app)
        try:
            pods = self.cluster.list_installer_pods(namespace, change.cluster_revision)
        except ClusterApiError as e:
            self.log.warning(f"Unable to look up installer pods in {namespace}: {e}")
            return
        if not pods:
            self.log.info(
                f"No installer pod found for {change.app} revision {change.cluster_revision}"
            )
        for name, created in pods:
            self.log.info(f"Installer pod {namespace}/{name} created at {created}")


@dataclass
class RebootResult:
    detected: bool
    count: int


class RebootDetector:
    """Counts reboots recorded since the upgrade was triggered."""

    def __init__(
        self,
        remote: RemoteExecutor,
        retry: RetryPolicy,
        log: Optional[logging.LoggerAdapter] = None,
    ):
        self.remote = remote
        self.retry = retry
        self.log = log or logger

    def _count(self) -> int:
        output = self.remote.check_output(REBOOT_COUNT_COMMAND).strip()
        if not output:
            raise ValueError("empty reboot count")
        return int(output)

    def check(self) -> RebootResult:
        """
        Raises:
            RetryExhaustedError: If the node could not be queried
        """
        count = self.retry.call(
            self._count, "determine if additional reboots occurred", log=self.log
        )
        if count == 0:
            self.log.info("No additional reboots detected")
            return RebootResult(detected=False, count=0)
        self.log.warning(f"Additional reboots detected: {count}")
        return RebootResult(detected=True, count=count)


class SriovWorkaroundDetector:
    """Looks for the reconciler-kick annotation on the default SR-IOV node policy."""

    def __init__(
        self,
        cluster: ClusterClient,
        policy_name: str = "default",
        log: Optional[logging.LoggerAdapter] = None,
    ):
        self.cluster = cluster
        self.policy_name = policy_name
        self.log = log or logger

    def check(self) -> bool:
        try:
            annotations = self.cluster.get_sriov_policy_annotations(self.policy_name)
        except ClusterApiError as e:
            self.log.warning(f"Unable to read SR-IOV node policy, assuming no workaround: {e}")
            return False
        if not annotations:
            return False
        return any(
            SRIOV_WORKAROUND_MARKER in key or SRIOV_WORKAROUND_MARKER in str(value)
            for key, value in annotations.items()
        )
