"""
Gateway Protocols

Capability interfaces the core depends on. ClusterGateway implements both
against the Kubernetes and cloud APIs; tests use an in-memory fake.

All methods are coroutines and must return promptly when the calling task
is cancelled.
"""

from typing import List, Protocol, runtime_checkable

from ..common.schemas import Cluster, NodePool, Node


@runtime_checkable
class InventoryGateway(Protocol):
    """Read-only view of the cluster"""

    async def get_cluster(self) -> Cluster:
        ...

    async def get_node_pool_list(self) -> List[NodePool]:
        ...

    async def get_node(self, node_name: str) -> Node:
        """Return the node with its bound pods"""
        ...

    async def get_node_list(self) -> List[Node]:
        """Return every valid node with its bound pods"""
        ...


@runtime_checkable
class NodeLifecycleGateway(Protocol):
    """Mutating node operations"""

    async def cordon(self, node_name: str) -> None:
        """Mark unschedulable; no-op if already unschedulable"""
        ...

    async def uncordon(self, node_name: str) -> None:
        """Mark schedulable; no-op if already schedulable"""
        ...

    async def is_unschedulable(self, node_name: str) -> bool:
        ...

    async def discover_eviction_api_version(self) -> str:
        """Preferred policy group version serving pods/eviction, "" if none"""
        ...

    async def evict_pod(self, namespace: str, name: str, api_version: str) -> None:
        """
        Raises DisruptionBudgetViolation when a disruption budget blocks the
        eviction, EvictionThrottledError when the API server throttles it
        """
        ...

    async def delete_node(self, node_name: str) -> None:
        ...

    async def stop_instance(self, zone: str, instance_id: str) -> None:
        ...
