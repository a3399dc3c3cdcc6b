"""
Run Options and Outcome Models

OptimizerOption drives a run; SelectionResult, RefreshOutcome and RunOutcome
record what the run saw and did, for reporting.
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime, timezone
from enum import Enum

from .cluster_models import Cluster, NodePool, Node, Pod


class OptimizerOption(BaseModel):
    """Policy options for one optimizer run"""
    minimum_preemptible_node_count: int = Field(0, ge=0, description="Configured preemptible floor")
    optimize_preemptible_node: bool = Field(True, description="Refresh the selected preemptible node")
    optimize_autoscale_ondemand_node: bool = Field(True, description="Drain the selected on-demand node")


class SelectionResult(BaseModel):
    """
    Output of the selection engine

    target_preemptible/target_ondemand are recorded even when their option
    flag is off; target_node_names only lists the nodes to refresh, the
    preemptible one first.
    """
    cluster: Cluster
    active_node_pools: List[NodePool] = Field(default_factory=list)
    active_nodes: List[Node] = Field(default_factory=list)
    preemptible_node_minimum_count: int = 0
    preemptible_node_actual_count: int = 0
    target_preemptible: Optional[Node] = None
    target_ondemand: Optional[Node] = None
    target_node_names: List[str] = Field(default_factory=list)


class RefreshState(str, Enum):
    """States of the single node refresh protocol"""
    READY = "READY"
    CORDONED = "CORDONED"
    DRAINED = "DRAINED"
    TERMINATED = "TERMINATED"
    ROLLED_BACK = "ROLLED_BACK"


class RefreshOutcome(BaseModel):
    """Result of refreshing a single node"""
    node_name: str
    preemptible: bool = False
    state: RefreshState = RefreshState.READY
    success: bool = False
    evicted_pods: List[Pod] = Field(default_factory=list)
    error: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunOutcome(BaseModel):
    """
    Aggregated outcome of one optimizer run

    Filled progressively, so a failed run still carries everything observed
    before the failure. Evicted pods are kept even when error is set.
    """
    project_id: str = ""
    hostname: str = ""
    start_time: datetime = Field(default_factory=_utcnow)
    end_time: Optional[datetime] = None
    cluster: Optional[Cluster] = None
    active_node_pools: List[NodePool] = Field(default_factory=list)
    active_nodes: List[Node] = Field(default_factory=list)
    preemptible_node_minimum_count: int = 0
    preemptible_node_actual_count: int = 0
    target_preemptible_node: Optional[Node] = None
    target_ondemand_autoscale_node: Optional[Node] = None
    evicted_pods: List[Pod] = Field(default_factory=list)
    refresh_outcomes: List[RefreshOutcome] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def set_error(self, err: BaseException) -> "RunOutcome":
        self.error = str(err) or type(err).__name__
        return self

    def apply_selection(self, selection: SelectionResult) -> None:
        """Copy selection data into the outcome"""
        self.cluster = selection.cluster
        self.active_node_pools = list(selection.active_node_pools)
        self.active_nodes = list(selection.active_nodes)
        self.preemptible_node_minimum_count = selection.preemptible_node_minimum_count
        self.preemptible_node_actual_count = selection.preemptible_node_actual_count
        self.target_preemptible_node = selection.target_preemptible
        self.target_ondemand_autoscale_node = selection.target_ondemand

    def evicted_pods_by_node_name(self, node_name: str) -> List[Pod]:
        return [pod for pod in self.evicted_pods if pod.node_name == node_name]
