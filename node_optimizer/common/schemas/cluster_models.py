"""
Cluster Inventory Models

Read-only snapshots of the cluster, its node pools, nodes and pods, as
returned by the inventory gateway. The core never mutates these; state is
re-read through the gateway when it matters.
"""

from pydantic import BaseModel, Field
from typing import List
from datetime import timedelta
from enum import Enum


class ClusterStatus(str, Enum):
    """Lifecycle status of the managed cluster"""
    PROVISIONING = "PROVISIONING"
    RUNNING = "RUNNING"
    RECONCILING = "RECONCILING"
    STOPPING = "STOPPING"
    ERROR = "ERROR"
    DEGRADED = "DEGRADED"
    UNKNOWN = "UNKNOWN"


class NodePoolStatus(str, Enum):
    """Lifecycle status of a node pool"""
    PROVISIONING = "PROVISIONING"
    RUNNING = "RUNNING"
    RUNNING_WITH_ERROR = "RUNNING_WITH_ERROR"
    RECONCILING = "RECONCILING"
    STOPPING = "STOPPING"
    ERROR = "ERROR"
    UNKNOWN = "UNKNOWN"


class Pod(BaseModel):
    """A pod bound to a node"""
    name: str = Field(..., description="Pod name")
    namespace: str = Field(..., description="Namespace")
    node_name: str = Field("", description="Node hosting this pod")
    hostname: str = Field("", description="Pod hostname")
    phase: str = Field("Unknown", description="Pod phase (Pending, Running, Succeeded, Failed, Unknown)")


class NodePool(BaseModel):
    """
    Node pool (managed node group)

    min_node_count/max_node_count are only meaningful when autoscale is set.
    Each backing instance group contributes min_node_count nodes to the
    preemptible floor.
    """
    name: str = Field(..., description="Node pool name")
    resource_url: str = Field("", description="Console URL of the node pool")
    preemptible: bool = Field(False, description="Pool runs preemptible/spot capacity")
    autoscale: bool = Field(False, description="Pool is autoscaled")
    min_node_count: int = Field(0, ge=0, description="Autoscaler minimum per instance group")
    max_node_count: int = Field(0, ge=0, description="Autoscaler maximum per instance group")
    status: NodePoolStatus = Field(NodePoolStatus.UNKNOWN, description="Lifecycle status")
    instance_group_urls: List[str] = Field(default_factory=list, description="Backing instance groups")


class Cluster(BaseModel):
    """Managed cluster snapshot"""
    name: str = Field(..., description="Cluster name")
    region: str = Field("", description="Cluster location")
    resource_url: str = Field("", description="Console URL of the cluster")
    status: ClusterStatus = Field(ClusterStatus.UNKNOWN, description="Lifecycle status")
    node_pools: List[NodePool] = Field(default_factory=list, description="Node pools in declaration order")


class Node(BaseModel):
    """
    Kubernetes node snapshot

    ready is True only when the last reported condition is Ready and the
    node is schedulable, so a node that is mid-drain never counts as ready.
    """
    name: str = Field(..., description="Kubernetes node name")
    resource_url: str = Field("", description="Console URL of the node")
    cluster_name: str = Field("", description="Owning cluster")
    node_pool: str = Field(..., description="Owning node pool")
    region: str = Field(..., description="Region label")
    zone: str = Field(..., description="Zone label")
    instance_id: str = Field("", description="Cloud instance backing the node")
    ready: bool = Field(False, description="Ready and schedulable")
    preemptible: bool = Field(False, description="Runs on preemptible/spot capacity")
    age: timedelta = Field(timedelta(0), description="Time since creation")
    pods: List[Pod] = Field(default_factory=list, description="Pods bound to the node")
