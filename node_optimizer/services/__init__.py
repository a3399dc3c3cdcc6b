"""
Node Optimizer Services

Core (selection, refresh protocol, orchestration, coordination) and the
Kubernetes/AWS/Slack adapters it runs against.
"""

from .errors import (
    NodeOptimizerError,
    GatewayError,
    DisruptionBudgetViolation,
    EvictionThrottledError,
    PreconditionError,
    RefreshError,
    RollbackError,
    RefreshFailedError,
)
from .gateways import InventoryGateway, NodeLifecycleGateway
from .selection_engine import SelectionEngine
from .node_refresher import NodeRefresher, PendingRollback
from .refresh_orchestrator import RefreshOrchestrator
from .optimizer import NodeOptimizer
from .reporter import NullReporter, SlackReporter

__all__ = [
    # Errors
    "NodeOptimizerError",
    "GatewayError",
    "DisruptionBudgetViolation",
    "EvictionThrottledError",
    "PreconditionError",
    "RefreshError",
    "RollbackError",
    "RefreshFailedError",

    # Gateways
    "InventoryGateway",
    "NodeLifecycleGateway",

    # Core
    "SelectionEngine",
    "NodeRefresher",
    "PendingRollback",
    "RefreshOrchestrator",
    "NodeOptimizer",

    # Reporting
    "NullReporter",
    "SlackReporter",
]
