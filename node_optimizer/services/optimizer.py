"""
Node Optimizer - Coordinator
============================

Top-level entry of the core: read the cluster, select targets, refresh them,
and record everything in a RunOutcome for reporting.

Flow:
1. Fetch cluster (with node pools) and the node snapshot
2. SelectionEngine validates preconditions and picks targets
   - Precondition failure: record the error, no mutation attempted
   - No targets: finish successfully
3. RefreshOrchestrator refreshes the targets
   - Evicted pods are merged into the outcome even when it fails
   - Its error becomes the run error

Usage:
    optimizer = NodeOptimizer(gateway, orchestrator, option, outcome)
    outcome = await optimizer.optimize()
    if not outcome.succeeded:
        logger.error(outcome.error)
"""

from typing import Optional
from datetime import datetime, timezone
import asyncio
import logging

from ..common.schemas import OptimizerOption, RunOutcome
from .errors import GatewayError, NodeOptimizerError, RefreshError, RefreshFailedError
from .gateways import InventoryGateway
from .refresh_orchestrator import RefreshOrchestrator
from .selection_engine import SelectionEngine

logger = logging.getLogger(__name__)


class NodeOptimizer:
    """
    Runs one optimization pass against a cluster

    The same RunOutcome is filled in place as the run progresses, so a
    caller holding it sees partial results even if the run is cancelled.
    """

    def __init__(
        self,
        inventory: InventoryGateway,
        orchestrator: RefreshOrchestrator,
        option: OptimizerOption,
        outcome: Optional[RunOutcome] = None,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize the optimizer

        Args:
            inventory: Cluster/node snapshot source
            orchestrator: Multi-node refresh orchestrator
            option: Policy options for this run
            outcome: Outcome to fill (a fresh one is created if omitted)
            log: Logger receiving structured events
        """
        self.inventory = inventory
        self.orchestrator = orchestrator
        self.option = option
        self.outcome = outcome if outcome is not None else RunOutcome()
        self.logger = log or logger
        self.selection_engine = SelectionEngine(option, log=self.logger)

    async def optimize(self) -> RunOutcome:
        """
        Run the optimization and return the outcome

        Errors are recorded on the outcome rather than raised; cancellation
        is recorded and re-raised.

        Returns:
            RunOutcome (outcome.error set on failure)
        """
        try:
            await self.run()
        except asyncio.CancelledError:
            self.outcome.error = "optimization cancelled"
            self.logger.error(
                "Optimization cancelled",
                extra={"event": "optimization_cancelled", "evicted_pods": len(self.outcome.evicted_pods)},
            )
            raise
        except NodeOptimizerError as e:
            self.outcome.set_error(e)
            self.logger.error(
                f"Failed to optimize nodes: {e}",
                extra={"event": "optimization_failed", "error_type": type(e).__name__,
                       "evicted_pods": len(self.outcome.evicted_pods)},
            )
        except Exception as e:
            self.outcome.set_error(e)
            self.logger.exception(
                f"Unexpected error optimizing nodes: {e}",
                extra={"event": "optimization_failed", "error_type": type(e).__name__},
            )
        finally:
            self.outcome.end_time = datetime.now(timezone.utc)
        return self.outcome

    async def run(self) -> None:
        """
        Run the optimization, raising on failure

        Raises:
            GatewayError: inventory could not be read
            PreconditionError: cluster is not safe to touch
            RefreshFailedError: refreshing the targets failed
        """
        try:
            cluster = await self.inventory.get_cluster()
        except NodeOptimizerError:
            raise
        except Exception as e:
            raise GatewayError("get_cluster", f"failed to get cluster: {e}") from e
        self.outcome.cluster = cluster

        try:
            nodes = await self.inventory.get_node_list()
        except NodeOptimizerError:
            raise
        except Exception as e:
            raise GatewayError("get_node_list", f"failed to get node list: {e}") from e
        self.outcome.active_nodes = list(nodes)

        selection = self.selection_engine.select(cluster, nodes)
        self.outcome.apply_selection(selection)

        if not selection.target_node_names:
            self.logger.info(
                "Refresh target node does not exist",
                extra={"event": "no_refresh_target"},
            )
            return

        try:
            await self.orchestrator.refresh_nodes(
                selection.target_node_names,
                evicted=self.outcome.evicted_pods,
                outcomes=self.outcome.refresh_outcomes,
            )
        except RefreshError as e:
            raise RefreshFailedError(e) from e
        self.logger.info(
            "Succeeded in refresh nodes",
            extra={"event": "nodes_refreshed", "nodes": list(selection.target_node_names),
                   "evicted_pods": len(self.outcome.evicted_pods)},
        )
