"""
Cluster Gateway

Implements InventoryGateway and NodeLifecycleGateway on top of the
Kubernetes and AWS clients. SDK calls block, so each one runs in a worker
thread. A cancelled await does not stop the thread: the request may still
land, which is why NodeRefresher settles its mutating calls.
"""

import asyncio
import logging
from typing import List

from ..common.config import Settings
from ..common.schemas import Cluster, Node, NodePool
from .aws_client import AWSClient
from .k8s_remote_client import NodeLabels, RemoteK8sClient

logger = logging.getLogger(__name__)


class ClusterGateway:
    """Async facade over RemoteK8sClient and AWSClient"""

    def __init__(self, k8s: RemoteK8sClient, aws: AWSClient, cluster_name: str):
        self.k8s = k8s
        self.aws = aws
        self.cluster_name = cluster_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClusterGateway":
        """Build the real clients from settings"""
        labels = NodeLabels(
            node_pool=settings.node_pool_label,
            preemptible=settings.preemptible_label,
            preemptible_value=settings.preemptible_label_value,
            region=settings.node_region_label,
            zone=settings.node_zone_label,
            name_prefix_template=settings.node_name_prefix_template,
        )
        k8s = RemoteK8sClient.from_kube_config(
            settings.cluster_name,
            use_local_config=settings.use_local_kube_config,
            labels=labels,
        )
        aws = AWSClient(region=settings.cluster_location)
        return cls(k8s, aws, settings.cluster_name)

    # Inventory
    async def get_cluster(self) -> Cluster:
        return await asyncio.to_thread(self.aws.describe_cluster, self.cluster_name)

    async def get_node_pool_list(self) -> List[NodePool]:
        return await asyncio.to_thread(self.aws.list_node_pools, self.cluster_name)

    async def get_node(self, node_name: str) -> Node:
        return await asyncio.to_thread(self.k8s.get_node, node_name)

    async def get_node_list(self) -> List[Node]:
        return await asyncio.to_thread(self.k8s.list_nodes)

    # Lifecycle
    async def cordon(self, node_name: str) -> None:
        await asyncio.to_thread(self.k8s.cordon_node, node_name)

    async def uncordon(self, node_name: str) -> None:
        await asyncio.to_thread(self.k8s.uncordon_node, node_name)

    async def is_unschedulable(self, node_name: str) -> bool:
        return await asyncio.to_thread(self.k8s.is_unschedulable, node_name)

    async def discover_eviction_api_version(self) -> str:
        return await asyncio.to_thread(self.k8s.policy_version)

    async def evict_pod(self, namespace: str, name: str, api_version: str) -> None:
        await asyncio.to_thread(self.k8s.evict_pod, namespace, name, api_version)

    async def delete_node(self, node_name: str) -> None:
        await asyncio.to_thread(self.k8s.delete_node, node_name)

    async def stop_instance(self, zone: str, instance_id: str) -> None:
        await asyncio.to_thread(self.aws.stop_instance, zone, instance_id)
