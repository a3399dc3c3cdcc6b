"""
Node Optimizer - Multi-Node Refresh Orchestrator
================================================

Runs the refresh protocol over an ordered target list (preemptible first,
then on-demand).

Flow:
1. Resolve every target (with its pods) before touching anything
2. Cordon every target, tracking a pending rollback set
3. Drain/terminate targets one at a time, pausing between nodes so evicted
   workloads can reschedule before more capacity is removed
4. On exit (success, failure or cancellation) uncordon every node still in
   the rollback set; deleted nodes left the set when they were deleted

Targets are never processed concurrently: bounding simultaneous capacity
loss is the point of the sequencing.
"""

from typing import List, Optional, Sequence
import asyncio
import logging

from ..common.schemas import Node, Pod, RefreshOutcome, RefreshState
from .errors import NodeResolutionError, RefreshError
from .gateways import InventoryGateway
from .node_refresher import NodeRefresher, PendingRollback, Sleeper

logger = logging.getLogger(__name__)

DEFAULT_NODE_PACING_SECONDS = 60.0


class RefreshOrchestrator:
    """
    Sequences NodeRefresher over several nodes

    Usage:
        orchestrator = RefreshOrchestrator(gateway, NodeRefresher(gateway))
        outcomes = await orchestrator.refresh_nodes(["node-a", "node-b"], evicted)
    """

    def __init__(
        self,
        inventory: InventoryGateway,
        refresher: NodeRefresher,
        pacing_seconds: float = DEFAULT_NODE_PACING_SECONDS,
        sleep: Sleeper = asyncio.sleep,
        log: Optional[logging.Logger] = None,
    ):
        self.inventory = inventory
        self.refresher = refresher
        self.pacing_seconds = pacing_seconds
        self.sleep = sleep
        self.logger = log or logger

    async def resolve(self, node_names: Sequence[str]) -> List[Node]:
        nodes = []
        for name in node_names:
            try:
                nodes.append(await self.inventory.get_node(name))
            except Exception as e:
                raise NodeResolutionError(f"failed to get node {name}: {e}", node_name=name) from e
        return nodes

    async def refresh_nodes(
        self,
        node_names: Sequence[str],
        evicted: Optional[List[Pod]] = None,
        outcomes: Optional[List[RefreshOutcome]] = None,
    ) -> List[RefreshOutcome]:
        """
        Refresh the given nodes in order

        Args:
            node_names: Target node names, preemptible first
            evicted: Run-wide evicted pod list, appended to as pods are evicted
            outcomes: Run-wide per-node outcome list, appended to as nodes finish

        Returns:
            Per-node outcomes

        Raises:
            RefreshError (or RollbackError) carrying every pod evicted so far
        """
        evicted = evicted if evicted is not None else []
        outcomes = outcomes if outcomes is not None else []
        nodes = await self.resolve(node_names)

        pending = PendingRollback()
        primary: Optional[BaseException] = None
        current: Optional[RefreshOutcome] = None
        start = len(evicted)
        try:
            for node in nodes:
                await self.refresher.cordon(node, pending)

            for i, node in enumerate(nodes):
                if i > 0:
                    self.logger.info(
                        f"Waiting {self.pacing_seconds:g} seconds for evicted pods on {nodes[i - 1].name} to running.",
                        extra={"event": "node_pacing", "previous_node": nodes[i - 1].name,
                               "next_node": node.name, "seconds": self.pacing_seconds},
                    )
                    await self.sleep(self.pacing_seconds)

                start = len(evicted)
                current = RefreshOutcome(node_name=node.name, preemptible=node.preemptible,
                                         state=RefreshState.CORDONED)
                outcomes.append(current)
                current.state = await self.refresher.process(node, pending, evicted)
                current.success = True
                current.evicted_pods = evicted[start:]
                self.logger.info(
                    f"Succeeded in refreshing node: {node.name}",
                    extra={"event": "node_refreshed", "node": node.name, "state": current.state.value,
                           "evicted_pods": len(current.evicted_pods)},
                )
                current = None
        except BaseException as e:
            primary = e
            if isinstance(e, RefreshError):
                e.evicted_pods = list(evicted)
            if current is not None:
                current.error = str(e) or type(e).__name__
                current.evicted_pods = evicted[start:]
                if current.node_name not in pending:
                    # deleted, but the instance stop failed
                    current.state = RefreshState.TERMINATED
            raise
        finally:
            rolled_back = [name for name in pending]
            try:
                await self.refresher.rollback(pending, primary, evicted)
            finally:
                for outcome in outcomes:
                    if (not outcome.success and outcome.node_name in rolled_back
                            and outcome.node_name not in pending):
                        outcome.state = RefreshState.ROLLED_BACK
        return outcomes
