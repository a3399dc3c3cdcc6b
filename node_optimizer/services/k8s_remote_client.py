"""
Remote Kubernetes API Client

Node, pod and eviction operations against the cluster API server, mapped
onto the optimizer's inventory models. Calls are blocking; ClusterGateway
runs them off the event loop.
"""

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from datetime import datetime, timedelta, timezone
import json
import logging
from typing import List, Optional

from ..common.schemas import Node, Pod
from .errors import DisruptionBudgetViolation, EvictionThrottledError, GatewayError

logger = logging.getLogger(__name__)

EVICTION_KIND = "Eviction"
EVICTION_RESOURCE = "pods/eviction"
POLICY_GROUP = "policy"
DISRUPTION_BUDGET_MESSAGE = "Cannot evict pod as it would violate the pod's disruption budget."
DISRUPTION_BUDGET_CAUSE = "DisruptionBudget"


class NodeLabels:
    """Label keys and naming convention that identify a valid cluster node"""

    def __init__(
        self,
        node_pool: str = "eks.amazonaws.com/nodegroup",
        preemptible: str = "eks.amazonaws.com/capacityType",
        preemptible_value: str = "SPOT",
        region: str = "topology.kubernetes.io/region",
        zone: str = "topology.kubernetes.io/zone",
        name_prefix_template: Optional[str] = None,
    ):
        self.node_pool = node_pool
        self.preemptible = preemptible
        self.preemptible_value = preemptible_value
        self.region = region
        self.zone = zone
        self.name_prefix_template = name_prefix_template

    def name_prefix(self, cluster_name: str, pool: str) -> Optional[str]:
        if not self.name_prefix_template or not cluster_name:
            return None
        return self.name_prefix_template.format(cluster=cluster_name, pool=pool)


class RemoteK8sClient:
    """
    Remote Kubernetes API Client

    Node snapshots drop nodes without the pool/region/zone labels or with
    an unexpected name; those are logged, not raised.
    """

    def __init__(
        self,
        api_client: k8s_client.ApiClient,
        cluster_name: str,
        labels: Optional[NodeLabels] = None,
        request_timeout_seconds: float = 30.0,
    ):
        """
        Initialize remote K8s API client

        Args:
            api_client: Configured kubernetes ApiClient
            cluster_name: Owning cluster, used for the node naming check
            labels: Node label conventions
            request_timeout_seconds: Per request timeout
        """
        self.cluster_name = cluster_name
        self.labels = labels or NodeLabels()
        self.request_timeout = request_timeout_seconds
        self.core_v1 = k8s_client.CoreV1Api(api_client)
        self.apis = k8s_client.ApisApi(api_client)

    @classmethod
    def from_kube_config(cls, cluster_name: str, use_local_config: bool = False, **kwargs) -> "RemoteK8sClient":
        """Build from the in-cluster service account, or ~/.kube/config when use_local_config"""
        if use_local_config:
            k8s_config.load_kube_config()
        else:
            k8s_config.load_incluster_config()
        return cls(k8s_client.ApiClient(), cluster_name, **kwargs)

    @classmethod
    def from_token(cls, api_endpoint: str, token: str, cluster_name: str, **kwargs) -> "RemoteK8sClient":
        """Build for a remote API server with a service account token"""
        config = k8s_client.Configuration()
        config.host = api_endpoint
        config.api_key = {"authorization": f"Bearer {token}"}
        config.verify_ssl = True
        return cls(k8s_client.ApiClient(config), cluster_name, **kwargs)

    # Node Operations
    def list_nodes(self) -> List[Node]:
        """List every valid node with its pods"""
        try:
            items = self.core_v1.list_node(_request_timeout=self.request_timeout).items
        except ApiException as e:
            logger.error(f"Failed to list nodes: {e}")
            raise GatewayError("list_nodes", f"failed to get node list: {e.reason}", e.status) from e
        nodes = []
        for item in items:
            node = self.to_node(item)
            if node is None:
                continue
            node.pods = self.list_pods_on_node(node.name)
            nodes.append(node)
        return nodes

    def get_node(self, node_name: str) -> Node:
        """Get one node with its pods; an invalid node is an error here"""
        item = self._read_node(node_name)
        node = self.to_node(item)
        if node is None:
            raise GatewayError("get_node", f"node {node_name} does not match the cluster node conventions")
        node.pods = self.list_pods_on_node(node.name)
        return node

    def is_unschedulable(self, node_name: str) -> bool:
        return bool(self._read_node(node_name).spec.unschedulable)

    def cordon_node(self, node_name: str) -> None:
        """Cordon node remotely (mark as unschedulable)"""
        self._set_unschedulable(node_name, True)

    def uncordon_node(self, node_name: str) -> None:
        """Uncordon node remotely (mark as schedulable)"""
        self._set_unschedulable(node_name, False)

    def delete_node(self, node_name: str) -> None:
        try:
            self.core_v1.delete_node(node_name, _request_timeout=self.request_timeout)
        except ApiException as e:
            logger.error(f"Failed to delete node {node_name}: {e}")
            raise GatewayError("delete_node", f"failed to delete node {node_name}: {e.reason}", e.status) from e
        logger.info(f"Deleted node {node_name}")

    # Pod Operations
    def list_pods_on_node(self, node_name: str) -> List[Pod]:
        try:
            pods = self.core_v1.list_pod_for_all_namespaces(
                field_selector=f"spec.nodeName={node_name}",
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            logger.error(f"Failed to list pods on node {node_name}: {e}")
            raise GatewayError(
                "list_pods", f"failed to get pod list by node name {node_name}: {e.reason}", e.status
            ) from e
        return [self.to_pod(pod) for pod in pods.items]

    def evict_pod(self, namespace: str, name: str, api_version: str) -> None:
        """
        Request a disruption-budget-aware eviction

        Raises:
            DisruptionBudgetViolation: refused by a PodDisruptionBudget
            EvictionThrottledError: HTTP 429 from API server flow control
            GatewayError: any other API failure
        """
        eviction = k8s_client.V1Eviction(
            api_version=api_version or None,
            kind=EVICTION_KIND,
            metadata=k8s_client.V1ObjectMeta(name=name, namespace=namespace),
        )
        try:
            self.core_v1.create_namespaced_pod_eviction(
                name=name,
                namespace=namespace,
                body=eviction,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if is_disruption_budget_violation(e):
                raise DisruptionBudgetViolation(namespace, name, status=e.status) from e
            if e.status == 429:
                raise EvictionThrottledError(namespace, name, status=e.status) from e
            raise GatewayError("evict_pod", f"failed to evict pod {namespace}/{name}: {e.reason}", e.status) from e
        logger.info(f"Evicted pod {namespace}/{name}")

    def policy_version(self) -> str:
        """
        Preferred policy group version if the server serves pods/eviction

        Returns "" when the policy group or the eviction subresource is
        missing; callers then evict without a version hint.
        """
        try:
            groups = self.apis.get_api_versions(_request_timeout=self.request_timeout).groups or []
        except ApiException as e:
            raise GatewayError("policy_version", f"failed to get server groups: {e.reason}", e.status) from e
        policy_group_version = None
        for group in groups:
            if group.name == POLICY_GROUP:
                policy_group_version = group.preferred_version.group_version
                break
        if policy_group_version is None:
            return ""

        try:
            resources = self.core_v1.get_api_resources(_request_timeout=self.request_timeout).resources or []
        except ApiException as e:
            raise GatewayError(
                "policy_version", f"failed to get server resource for group version v1: {e.reason}", e.status
            ) from e
        for resource in resources:
            if resource.name == EVICTION_RESOURCE and resource.kind == EVICTION_KIND:
                return policy_group_version
        return ""

    # Helper methods
    def to_node(self, item) -> Optional[Node]:
        """Map a V1Node; returns None (and logs) for nodes outside the conventions"""
        name = item.metadata.name
        labels = item.metadata.labels or {}
        pool = labels.get(self.labels.node_pool)
        if pool is None:
            logger.error(f"Ignore node because label {self.labels.node_pool} is not exists: name={name}")
            return None
        prefix = self.labels.name_prefix(self.cluster_name, pool)
        if prefix is not None and not name.startswith(prefix):
            logger.error(f"Ignore node because unexpected node name prefix: name={name}, prefix={prefix}")
            return None
        region = labels.get(self.labels.region)
        if region is None:
            logger.error(f"Ignore node because label {self.labels.region} is not exists: name={name}")
            return None
        zone = labels.get(self.labels.zone)
        if zone is None:
            logger.error(f"Ignore node because label {self.labels.zone} is not exists: name={name}")
            return None

        created = item.metadata.creation_timestamp
        age = datetime.now(timezone.utc) - created if created else timedelta(0)
        return Node(
            name=name,
            resource_url=(
                f"https://console.aws.amazon.com/eks/home?region={region}"
                f"#/clusters/{self.cluster_name}/nodes/{name}"
            ),
            cluster_name=self.cluster_name,
            node_pool=pool,
            region=region,
            zone=zone,
            instance_id=instance_id_from_provider_id(item.spec.provider_id),
            ready=self._is_ready(item),
            preemptible=labels.get(self.labels.preemptible) == self.labels.preemptible_value,
            age=age,
        )

    def to_pod(self, item) -> Pod:
        return Pod(
            name=item.metadata.name,
            namespace=item.metadata.namespace,
            node_name=item.spec.node_name or "",
            hostname=item.spec.hostname or "",
            phase=(item.status.phase if item.status else None) or "Unknown",
        )

    def _is_ready(self, item) -> bool:
        """Last condition is Ready=True and the node is schedulable"""
        conditions = (item.status.conditions if item.status else None) or []
        if not conditions:
            return False
        last = conditions[-1]
        return last.type == "Ready" and last.status == "True" and not item.spec.unschedulable

    def _read_node(self, node_name: str):
        try:
            return self.core_v1.read_node(node_name, _request_timeout=self.request_timeout)
        except ApiException as e:
            logger.error(f"Failed to get node {node_name}: {e}")
            raise GatewayError("get_node", f"failed to get node {node_name}: {e.reason}", e.status) from e

    def _set_unschedulable(self, node_name: str, unschedulable: bool) -> None:
        action = "cordon" if unschedulable else "uncordon"
        node = self._read_node(node_name)
        if bool(node.spec.unschedulable) == unschedulable:
            logger.info(f"Already {action}: {node_name}")
            return
        try:
            self.core_v1.patch_node(
                node_name,
                {"spec": {"unschedulable": unschedulable}},
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            logger.error(f"Failed to {action} node {node_name}: {e}")
            raise GatewayError(action, f"failed to {action} node {node_name}: {e.reason}", e.status) from e
        logger.info(f"Succeeded in {action} node: {node_name}")


def response_text(e: ApiException) -> str:
    return e.body.decode("utf-8", "replace") if isinstance(e.body, bytes) else (e.body or "")


def is_disruption_budget_violation(e: ApiException) -> bool:
    """
    A PodDisruptionBudget refusal, told apart from API priority and fairness
    throttling, which answers 429 as well

    The refusal is a metav1.Status whose details.causes has reason
    DisruptionBudget; older servers only send the refusal message.
    """
    text = response_text(e)
    try:
        status = json.loads(text)
    except ValueError:
        status = None
    if isinstance(status, dict):
        causes = (status.get("details") or {}).get("causes") or []
        if any(isinstance(c, dict) and c.get("reason") == DISRUPTION_BUDGET_CAUSE for c in causes):
            return True
    return DISRUPTION_BUDGET_MESSAGE in text or DISRUPTION_BUDGET_MESSAGE in (e.reason or "")


def instance_id_from_provider_id(provider_id: Optional[str]) -> str:
    """aws:///us-east-1a/i-0abc -> i-0abc, gce://project/zone/name -> name"""
    if not provider_id:
        return ""
    return provider_id.rstrip("/").split("/")[-1]
