"""
Remote Kubernetes Client Tests

CoreV1Api/ApisApi are replaced with mocks; node and pod payloads use the
real kubernetes client models.
"""

from datetime import datetime, timedelta, timezone
import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from kubernetes import client as k8s_client
from kubernetes.client.rest import ApiException

from node_optimizer.services.errors import DisruptionBudgetViolation, EvictionThrottledError, GatewayError
from node_optimizer.services.k8s_remote_client import (
    DISRUPTION_BUDGET_MESSAGE,
    NodeLabels,
    RemoteK8sClient,
    instance_id_from_provider_id,
    is_disruption_budget_violation,
)

LABELS = {
    "eks.amazonaws.com/nodegroup": "spot-pool",
    "eks.amazonaws.com/capacityType": "SPOT",
    "topology.kubernetes.io/region": "us-east-1",
    "topology.kubernetes.io/zone": "us-east-1b",
}


def budget_refusal():
    e = ApiException(status=429, reason="Too Many Requests")
    e.body = json.dumps({
        "kind": "Status",
        "status": "Failure",
        "message": DISRUPTION_BUDGET_MESSAGE,
        "reason": "TooManyRequests",
        "details": {"causes": [{
            "reason": "DisruptionBudget",
            "message": "The disruption budget web-pdb needs 2 healthy pods and has 2 currently",
        }]},
        "code": 429,
    }).encode()
    return e


def v1_node(name="ip-10-0-1-1", labels=None, unschedulable=None, conditions=None, age=timedelta(hours=3)):
    if conditions is None:
        conditions = [
            k8s_client.V1NodeCondition(type="MemoryPressure", status="False"),
            k8s_client.V1NodeCondition(type="Ready", status="True"),
        ]
    return k8s_client.V1Node(
        metadata=k8s_client.V1ObjectMeta(
            name=name,
            labels=dict(LABELS) if labels is None else labels,
            creation_timestamp=datetime.now(timezone.utc) - age,
        ),
        spec=k8s_client.V1NodeSpec(unschedulable=unschedulable, provider_id=f"aws:///us-east-1b/i-{name}"),
        status=k8s_client.V1NodeStatus(conditions=conditions),
    )


def v1_pod(name, node_name, namespace="default"):
    return k8s_client.V1Pod(
        metadata=k8s_client.V1ObjectMeta(name=name, namespace=namespace),
        spec=k8s_client.V1PodSpec(containers=[], node_name=node_name, hostname=name),
        status=k8s_client.V1PodStatus(phase="Running"),
    )


class TestRemoteK8sClient:
    """Test suite for RemoteK8sClient"""

    @pytest.fixture
    def client(self):
        remote = RemoteK8sClient(MagicMock(), "test-cluster")
        remote.core_v1 = MagicMock()
        remote.apis = MagicMock()
        return remote

    def test_to_node_maps_labels(self, client):
        node = client.to_node(v1_node())

        assert node.name == "ip-10-0-1-1"
        assert node.node_pool == "spot-pool"
        assert node.region == "us-east-1"
        assert node.zone == "us-east-1b"
        assert node.preemptible is True
        assert node.ready is True
        assert node.instance_id == "i-ip-10-0-1-1"
        assert timedelta(hours=2, minutes=59) < node.age < timedelta(hours=3, minutes=1)

    def test_on_demand_capacity(self, client):
        labels = dict(LABELS, **{"eks.amazonaws.com/capacityType": "ON_DEMAND"})
        assert client.to_node(v1_node(labels=labels)).preemptible is False

    @pytest.mark.parametrize(
        "missing",
        ["eks.amazonaws.com/nodegroup", "topology.kubernetes.io/region", "topology.kubernetes.io/zone"],
    )
    def test_missing_label_is_ignored(self, client, missing):
        labels = {k: v for k, v in LABELS.items() if k != missing}
        assert client.to_node(v1_node(labels=labels)) is None

    def test_name_prefix_check(self):
        labels = NodeLabels(name_prefix_template="gke-{cluster}-{pool}")
        remote = RemoteK8sClient(MagicMock(), "test-cluster", labels=labels)

        assert remote.to_node(v1_node(name="ip-10-0-1-1")) is None
        assert remote.to_node(v1_node(name="gke-test-cluster-spot-pool-abcd")) is not None

    def test_ready_requires_last_condition_ready_true(self, client):
        not_ready = [k8s_client.V1NodeCondition(type="Ready", status="False")]
        ready_not_last = [
            k8s_client.V1NodeCondition(type="Ready", status="True"),
            k8s_client.V1NodeCondition(type="DiskPressure", status="False"),
        ]

        assert client.to_node(v1_node(conditions=not_ready)).ready is False
        assert client.to_node(v1_node(conditions=ready_not_last)).ready is False
        assert client.to_node(v1_node(conditions=[])).ready is False

    def test_cordoned_node_is_not_ready(self, client):
        assert client.to_node(v1_node(unschedulable=True)).ready is False

    def test_list_nodes_skips_invalid_and_attaches_pods(self, client):
        client.core_v1.list_node.return_value = SimpleNamespace(items=[v1_node(), v1_node("bad", labels={})])
        client.core_v1.list_pod_for_all_namespaces.return_value = SimpleNamespace(
            items=[v1_pod("web-1", "ip-10-0-1-1"), v1_pod("web-2", "ip-10-0-1-1", "shop")]
        )

        nodes = client.list_nodes()

        assert [node.name for node in nodes] == ["ip-10-0-1-1"]
        assert [(pod.namespace, pod.name) for pod in nodes[0].pods] == [("default", "web-1"), ("shop", "web-2")]
        client.core_v1.list_pod_for_all_namespaces.assert_called_once()
        assert client.core_v1.list_pod_for_all_namespaces.call_args.kwargs["field_selector"] == \
            "spec.nodeName=ip-10-0-1-1"

    def test_list_nodes_failure(self, client):
        client.core_v1.list_node.side_effect = ApiException(status=500, reason="Internal Server Error")

        with pytest.raises(GatewayError) as exc:
            client.list_nodes()
        assert exc.value.status == 500

    def test_get_invalid_node_is_an_error(self, client):
        client.core_v1.read_node.return_value = v1_node(labels={})

        with pytest.raises(GatewayError):
            client.get_node("ip-10-0-1-1")

    def test_cordon_patches_schedulable_node(self, client):
        client.core_v1.read_node.return_value = v1_node()

        client.cordon_node("ip-10-0-1-1")

        client.core_v1.patch_node.assert_called_once()
        assert client.core_v1.patch_node.call_args.args == ("ip-10-0-1-1", {"spec": {"unschedulable": True}})

    def test_uncordon_schedulable_node_is_a_no_op(self, client):
        client.core_v1.read_node.return_value = v1_node(unschedulable=None)

        client.uncordon_node("ip-10-0-1-1")
        client.uncordon_node("ip-10-0-1-1")

        client.core_v1.patch_node.assert_not_called()

    def test_cordon_failure(self, client):
        client.core_v1.read_node.return_value = v1_node()
        client.core_v1.patch_node.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(GatewayError) as exc:
            client.cordon_node("ip-10-0-1-1")
        assert exc.value.operation == "cordon"

    def test_is_unschedulable(self, client):
        client.core_v1.read_node.return_value = v1_node(unschedulable=True)
        assert client.is_unschedulable("ip-10-0-1-1") is True

    def test_evict_pod_sends_eviction(self, client):
        client.evict_pod("shop", "web-1", "policy/v1")

        kwargs = client.core_v1.create_namespaced_pod_eviction.call_args.kwargs
        assert kwargs["name"] == "web-1"
        assert kwargs["namespace"] == "shop"
        assert kwargs["body"].api_version == "policy/v1"
        assert kwargs["body"].kind == "Eviction"

    def test_evict_pod_budget_refusal(self, client):
        client.core_v1.create_namespaced_pod_eviction.side_effect = budget_refusal()

        with pytest.raises(DisruptionBudgetViolation) as exc:
            client.evict_pod("shop", "web-1", "policy/v1")
        assert exc.value.pod_name == "web-1"

    def test_evict_pod_throttled(self, client):
        client.core_v1.create_namespaced_pod_eviction.side_effect = ApiException(
            status=429, reason="Too Many Requests"
        )

        with pytest.raises(EvictionThrottledError) as exc:
            client.evict_pod("shop", "web-1", "policy/v1")
        assert exc.value.pod_name == "web-1"
        assert exc.value.status == 429

    def test_evict_pod_other_error(self, client):
        client.core_v1.create_namespaced_pod_eviction.side_effect = ApiException(status=404, reason="Not Found")

        with pytest.raises(GatewayError) as exc:
            client.evict_pod("shop", "web-1", "policy/v1")
        assert not isinstance(exc.value, DisruptionBudgetViolation)

    def test_policy_version(self, client):
        client.apis.get_api_versions.return_value = SimpleNamespace(groups=[
            SimpleNamespace(name="apps", preferred_version=SimpleNamespace(group_version="apps/v1")),
            SimpleNamespace(name="policy", preferred_version=SimpleNamespace(group_version="policy/v1")),
        ])
        client.core_v1.get_api_resources.return_value = SimpleNamespace(resources=[
            SimpleNamespace(name="pods", kind="Pod"),
            SimpleNamespace(name="pods/eviction", kind="Eviction"),
        ])

        assert client.policy_version() == "policy/v1"

    def test_policy_version_without_eviction_resource(self, client):
        client.apis.get_api_versions.return_value = SimpleNamespace(groups=[
            SimpleNamespace(name="policy", preferred_version=SimpleNamespace(group_version="policy/v1")),
        ])
        client.core_v1.get_api_resources.return_value = SimpleNamespace(resources=[
            SimpleNamespace(name="pods", kind="Pod"),
        ])

        assert client.policy_version() == ""

    def test_policy_version_without_policy_group(self, client):
        client.apis.get_api_versions.return_value = SimpleNamespace(groups=[])

        assert client.policy_version() == ""
        client.core_v1.get_api_resources.assert_not_called()


class TestHelpers:
    def test_budget_violation_by_cause(self):
        assert is_disruption_budget_violation(budget_refusal())

    def test_throttling_is_not_a_budget_violation(self):
        e = ApiException(status=429, reason="Too Many Requests")
        e.body = json.dumps({
            "kind": "Status",
            "status": "Failure",
            "message": "Too many requests, please try again later.",
            "reason": "TooManyRequests",
            "details": {"retryAfterSeconds": 1},
            "code": 429,
        })
        assert not is_disruption_budget_violation(e)
        assert not is_disruption_budget_violation(ApiException(status=429, reason="Too Many Requests"))

    def test_budget_violation_by_message(self):
        e = ApiException(status=500, reason="Internal Server Error")
        e.body = ('{"message": "' + DISRUPTION_BUDGET_MESSAGE + '"}').encode()
        assert is_disruption_budget_violation(e)

    def test_not_a_budget_violation(self):
        assert not is_disruption_budget_violation(ApiException(status=500, reason="Internal Server Error"))

    @pytest.mark.parametrize(
        "provider_id,expected",
        [
            ("aws:///us-east-1a/i-0abc123", "i-0abc123"),
            ("gce://project/zone/gke-node-1", "gke-node-1"),
            ("", ""),
            (None, ""),
        ],
    )
    def test_instance_id_from_provider_id(self, provider_id, expected):
        assert instance_id_from_provider_id(provider_id) == expected
