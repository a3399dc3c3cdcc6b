"""
Node Optimizer - Selection Engine
=================================

Decides which nodes a run touches. Pure: no gateway access, no mutation.

Preconditions (any failure aborts the run before a single mutation):
1. Cluster is RUNNING
2. Every node pool is RUNNING (one bad pool aborts the whole run)
3. At least one preemptible node pool exists
4. At least one node exists and every node is Ready
5. Preemptible node count >= max(pool floor, configured minimum)

Targets:
- Preemptible: the oldest node (first seen wins on ties), since it is the
  closest to being reclaimed anyway
- Autoscaled on-demand: the node with the fewest pods (first seen wins on
  ties), to keep the eviction blast radius small
"""

from typing import Dict, List, Optional, Sequence
import logging

from ..common.schemas import (
    Cluster,
    ClusterStatus,
    Node,
    NodePool,
    NodePoolStatus,
    OptimizerOption,
    SelectionResult,
)
from .errors import (
    ClusterNotRunningError,
    InsufficientPreemptibleCapacityError,
    NoNodesError,
    NodeNotReadyError,
    NoPreemptiblePoolError,
    PoolNotRunningError,
)

logger = logging.getLogger(__name__)


def preemptible_floor(pools: Sequence[NodePool]) -> int:
    """Minimum preemptible node count implied by the pools' autoscaler minimums"""
    return sum(pool.min_node_count * len(pool.instance_group_urls) for pool in pools if pool.preemptible)


def oldest_node(nodes: Sequence[Node]) -> Optional[Node]:
    selected = None
    for node in nodes:
        if selected is None or selected.age < node.age:
            selected = node
    return selected


def least_loaded_node(nodes: Sequence[Node]) -> Optional[Node]:
    selected = None
    for node in nodes:
        if selected is None or len(selected.pods) > len(node.pods):
            selected = node
    return selected


class SelectionEngine:
    """
    Computes the refresh targets for one run

    Usage:
        engine = SelectionEngine(option)
        selection = engine.select(cluster, nodes)
        if selection.target_node_names:
            ...
    """

    def __init__(self, option: OptimizerOption, log: Optional[logging.Logger] = None):
        self.option = option
        self.logger = log or logger

    def select(self, cluster: Cluster, nodes: Sequence[Node]) -> SelectionResult:
        """
        Validate the snapshot and pick targets

        Args:
            cluster: Cluster snapshot including its node pools
            nodes: Valid nodes with their bound pods

        Returns:
            SelectionResult (target_node_names may be empty)

        Raises:
            PreconditionError subclasses when the cluster is not safe to touch
        """
        if cluster.status != ClusterStatus.RUNNING:
            raise ClusterNotRunningError(cluster.name, cluster.status.value)

        preemptible_pools: List[NodePool] = []
        ondemand_autoscale_pools: List[NodePool] = []
        for pool in cluster.node_pools:
            if pool.status != NodePoolStatus.RUNNING:
                raise PoolNotRunningError(pool.name, pool.status.value)
            if pool.preemptible:
                preemptible_pools.append(pool)
            elif pool.autoscale:
                ondemand_autoscale_pools.append(pool)
            self.logger.info(
                f"Fetch node-pool. name={pool.name}, preemptible={pool.preemptible}, autoscale={pool.autoscale}",
                extra={"event": "node_pool_fetched", "node_pool": pool.name,
                       "preemptible": pool.preemptible, "autoscale": pool.autoscale},
            )
        if not preemptible_pools:
            raise NoPreemptiblePoolError()

        if not nodes:
            raise NoNodesError()
        nodes_by_pool: Dict[str, List[Node]] = {}
        for node in nodes:
            if not node.ready:
                raise NodeNotReadyError(node.name)
            nodes_by_pool.setdefault(node.node_pool, []).append(node)
            self.logger.info(
                f"Fetch node. name={node.name}, preemptible={node.preemptible}, age={node.age}, pods={len(node.pods)}",
                extra={"event": "node_fetched", "node": node.name, "preemptible": node.preemptible,
                       "age_seconds": node.age.total_seconds(), "pods": len(node.pods)},
            )

        result = SelectionResult(
            cluster=cluster,
            active_node_pools=[pool for pool in cluster.node_pools if pool.name in nodes_by_pool],
            active_nodes=list(nodes),
        )

        preemptible_nodes: List[Node] = []
        for pool in preemptible_pools:
            preemptible_nodes.extend(nodes_by_pool.get(pool.name, []))
        minimum = max(preemptible_floor(preemptible_pools), self.option.minimum_preemptible_node_count)
        result.preemptible_node_minimum_count = minimum
        result.preemptible_node_actual_count = len(preemptible_nodes)
        if len(preemptible_nodes) < minimum:
            raise InsufficientPreemptibleCapacityError(minimum, len(preemptible_nodes))

        ondemand_autoscale_nodes: List[Node] = []
        for pool in ondemand_autoscale_pools:
            ondemand_autoscale_nodes.extend(nodes_by_pool.get(pool.name, []))

        target = oldest_node(preemptible_nodes)
        if target is not None:
            self.logger.info(
                f"Refresh oldest preemptible node: name={target.name}, nodePoolName={target.node_pool}, age={target.age}",
                extra={"event": "target_selected", "kind": "preemptible", "node": target.name,
                       "node_pool": target.node_pool, "enabled": self.option.optimize_preemptible_node},
            )
            result.target_preemptible = target
            if self.option.optimize_preemptible_node:
                result.target_node_names.append(target.name)

        target = least_loaded_node(ondemand_autoscale_nodes)
        if target is not None:
            self.logger.info(
                f"Refresh target ondemand autoscale node: name={target.name}, nodePoolName={target.node_pool}, pods={len(target.pods)}",
                extra={"event": "target_selected", "kind": "ondemand", "node": target.name,
                       "node_pool": target.node_pool, "enabled": self.option.optimize_autoscale_ondemand_node},
            )
            result.target_ondemand = target
            if self.option.optimize_autoscale_ondemand_node:
                result.target_node_names.append(target.name)

        return result
