"""
Cluster API client for the ImageBasedUpgrade resource and related objects.
"""

import logging
import time
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from errors import ClusterApiError, ConfigError
from models import Stage

logger = logging.getLogger(__name__)

T = TypeVar("T")

LCA_GROUP = "lca.openshift.io"
IBU_PLURAL = "imagebasedupgrades"

LCA_NAMESPACE = "openshift-lifecycle-agent"
LCA_DEPLOYMENT = "lifecycle-agent-controller-manager"

SRIOV_GROUP = "sriovnetwork.openshift.io"
SRIOV_NAMESPACE = "openshift-sriov-network-operator"
SRIOV_POLICY_PLURAL = "sriovnetworknodepolicies"


class ClusterClient:
    """Thin wrapper over the kubernetes client for the objects the harness reads."""

    RETRYABLE_STATUS_CODES = {0, 429, 500, 502, 503, 504}

    def __init__(
        self,
        kubeconfig: str,
        ibu_name: str = "upgrade",
        ibu_api_version: str = "v1",
        timeout_s: int = 30,
        max_retries: int = 2,
        base_delay: float = 1.0,
    ):
        """
        Initialize the cluster client.

        Args:
            kubeconfig: Path to the kubeconfig file
            ibu_name: Name of the ImageBasedUpgrade object
            ibu_api_version: API version of lca.openshift.io
            timeout_s: Request timeout in seconds
            max_retries: Retries for transient API errors
            base_delay: Base delay for exponential backoff

        Raises:
            ConfigError: If the kubeconfig cannot be loaded
        """
        self.kubeconfig = kubeconfig
        self.ibu_name = ibu_name
        self.ibu_api_version = ibu_api_version
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.base_delay = base_delay

        try:
            api_client = config.new_client_from_config(config_file=kubeconfig)
        except (ConfigException, OSError) as e:
            raise ConfigError(f"Failed to load kubeconfig {kubeconfig}: {e}") from e

        self.custom = client.CustomObjectsApi(api_client)
        self.core = client.CoreV1Api(api_client)
        self.apps = client.AppsV1Api(api_client)

    def _call_with_retry(self, description: str, func: Callable[..., T], *args, **kwargs) -> T:
        """
        Execute an API call with exponential backoff for transient errors.

        Args:
            description: What the call does, for messages
            func: Bound kubernetes client method
            *args, **kwargs: Passed to func

        Returns:
            The call's return value

        Raises:
            ClusterApiError: On a non-retryable error, or when retries are exhausted
        """
        last_error = None
        kwargs.setdefault("_request_timeout", self.timeout_s)

        for attempt in range(self.max_retries + 1):
            try:
                return func(*args, **kwargs)
            except ApiException as e:
                if e.status not in self.RETRYABLE_STATUS_CODES:
                    raise ClusterApiError(
                        f"{description} failed ({e.status}): {e.reason}", status=e.status
                    ) from e
                last_error = f"HTTP {e.status}: {e.reason}"
            except Exception as e:
                last_error = str(e)

            if attempt < self.max_retries:
                delay = self._calculate_delay(attempt)
                logger.debug(
                    f"{description}: {last_error}, attempt {attempt + 1}/{self.max_retries + 1}, "
                    f"waiting {delay:.1f}s..."
                )
                time.sleep(delay)

        raise ClusterApiError(f"{description} failed after retries. Last error: {last_error}")

    def _calculate_delay(self, attempt: int) -> float:
        """Exponential backoff, capped at 30 seconds."""
        return min(self.base_delay * (2**attempt), 30.0)

    def get_ibu(self) -> Dict:
        """Fetch the ImageBasedUpgrade object as a dictionary."""
        return self._call_with_retry(
            "Get imagebasedupgrade",
            self.custom.get_cluster_custom_object,
            LCA_GROUP,
            self.ibu_api_version,
            IBU_PLURAL,
            self.ibu_name,
        )

    def patch_stage(self, stage: Stage) -> Dict:
        """Merge-patch .spec.stage on the ImageBasedUpgrade object."""
        return self._call_with_retry(
            f"Patch imagebasedupgrade stage to {stage.value}",
            self.custom.patch_cluster_custom_object,
            LCA_GROUP,
            self.ibu_api_version,
            IBU_PLURAL,
            self.ibu_name,
            {"spec": {"stage": stage.value}},
        )

    def get_seed_image_ref(self) -> Tuple[str, str]:
        """Return (image, version) from .spec.seedImageRef."""
        ibu = self.get_ibu()
        ref = (ibu.get("spec") or {}).get("seedImageRef") or {}
        return ref.get("image") or "", ref.get("version") or ""

    def get_node_hostname(self) -> Optional[str]:
        """Return the first Hostname address reported by any node."""
        nodes = self._call_with_retry("List nodes", self.core.list_node)
        for node in nodes.items or []:
            for address in (node.status.addresses if node.status else None) or []:
                if address.type == "Hostname" and address.address:
                    return address.address
        return None

    def get_sriov_policy_annotations(self, name: str = "default") -> Optional[Dict[str, str]]:
        """
        Return the annotations of a SriovNetworkNodePolicy.

        Returns:
            Annotation dictionary, or None if the policy does not exist
        """
        try:
            policy = self._call_with_retry(
                f"Get sriovnetworknodepolicy {name}",
                self.custom.get_namespaced_custom_object,
                SRIOV_GROUP,
                "v1",
                SRIOV_NAMESPACE,
                SRIOV_POLICY_PLURAL,
                name,
            )
        except ClusterApiError as e:
            if e.status == 404:
                return None
            raise
        return (policy.get("metadata") or {}).get("annotations") or {}

    def list_installer_pods(self, namespace: str, revision: str) -> List[Tuple[str, Optional[str]]]:
        """
        List installer pods for a static pod revision.

        Returns:
            List of (pod name, creation timestamp) tuples
        """
        pods = self._call_with_retry(
            f"List pods in {namespace}", self.core.list_namespaced_pod, namespace
        )
        prefix = f"installer-{revision}-"
        found = []
        for pod in pods.items or []:
            name = pod.metadata.name or ""
            if name.startswith(prefix):
                created = pod.metadata.creation_timestamp
                found.append((name, created.isoformat() if created else None))
        return found

    def get_lca_available_replicas(self) -> int:
        """Return availableReplicas of the lifecycle agent controller deployment."""
        deployment = self._call_with_retry(
            "Get lifecycle agent deployment",
            self.apps.read_namespaced_deployment,
            LCA_DEPLOYMENT,
            LCA_NAMESPACE,
        )
        return int((deployment.status.available_replicas if deployment.status else 0) or 0)

    def list_cluster_operators(self) -> List[Dict]:
        """List ClusterOperator objects."""
        data = self._call_with_retry(
            "List clusteroperators",
            self.custom.list_cluster_custom_object,
            "config.openshift.io",
            "v1",
            "clusteroperators",
        )
        return data.get("items", [])

    def list_machine_config_pools(self) -> List[Dict]:
        """List MachineConfigPool objects."""
        data = self._call_with_retry(
            "List machineconfigpools",
            self.custom.list_cluster_custom_object,
            "machineconfiguration.openshift.io",
            "v1",
            "machineconfigpools",
        )
        return data.get("items", [])
