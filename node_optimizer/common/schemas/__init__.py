"""
Shared Schemas for the Node Optimizer

Pydantic models exchanged between the gateways, the core services and the
reporters.
"""

from .cluster_models import (
    ClusterStatus,
    NodePoolStatus,
    Cluster,
    NodePool,
    Node,
    Pod,
)

from .outcomes import (
    OptimizerOption,
    SelectionResult,
    RefreshState,
    RefreshOutcome,
    RunOutcome,
)

__all__ = [
    # Inventory
    "ClusterStatus",
    "NodePoolStatus",
    "Cluster",
    "NodePool",
    "Node",
    "Pod",

    # Run
    "OptimizerOption",
    "SelectionResult",
    "RefreshState",
    "RefreshOutcome",
    "RunOutcome",
]
