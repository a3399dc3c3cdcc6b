"""
AWS Client Service

Handles the cloud side of the cluster:
- Describe the EKS cluster and its managed node groups
- Stop (replace) the instance behind a deleted node
"""

import boto3
from botocore.exceptions import ClientError
import logging
from typing import Any, Dict, List, Optional

from ..common.schemas import Cluster, ClusterStatus, NodePool, NodePoolStatus
from .errors import GatewayError

logger = logging.getLogger(__name__)

CLUSTER_STATUS = {
    "ACTIVE": ClusterStatus.RUNNING,
    "CREATING": ClusterStatus.PROVISIONING,
    "PENDING": ClusterStatus.PROVISIONING,
    "UPDATING": ClusterStatus.RECONCILING,
    "DELETING": ClusterStatus.STOPPING,
    "FAILED": ClusterStatus.ERROR,
}

NODE_POOL_STATUS = {
    "ACTIVE": NodePoolStatus.RUNNING,
    "CREATING": NodePoolStatus.PROVISIONING,
    "UPDATING": NodePoolStatus.RECONCILING,
    "DELETING": NodePoolStatus.STOPPING,
    "CREATE_FAILED": NodePoolStatus.ERROR,
    "DELETE_FAILED": NodePoolStatus.ERROR,
    "DEGRADED": NodePoolStatus.RUNNING_WITH_ERROR,
}


class AWSClient:
    """EKS and Auto Scaling API client for the optimizer"""

    def __init__(self, region: str = "us-east-1", eks_client=None, autoscaling_client=None):
        """
        Initialize AWS client

        Args:
            region: AWS region of the cluster
            eks_client: Optional preconfigured boto3 EKS client
            autoscaling_client: Optional preconfigured boto3 Auto Scaling client
        """
        self.region = region
        self.eks = eks_client or boto3.client("eks", region_name=region)
        self.autoscaling = autoscaling_client or boto3.client("autoscaling", region_name=region)
        logger.info(f"AWS client initialized for region {region}")

    def describe_cluster(self, cluster_name: str) -> Cluster:
        """
        Describe the cluster and its managed node groups

        Args:
            cluster_name: EKS cluster name

        Returns:
            Cluster with node_pools populated
        """
        try:
            response = self.eks.describe_cluster(name=cluster_name)
        except ClientError as e:
            raise _gateway_error("describe_cluster", f"failed to get cluster {cluster_name}", e) from e
        info = response["cluster"]
        return Cluster(
            name=info["name"],
            region=self.region,
            resource_url=f"https://console.aws.amazon.com/eks/home?region={self.region}#/clusters/{info['name']}",
            status=CLUSTER_STATUS.get(info.get("status", ""), ClusterStatus.UNKNOWN),
            node_pools=self.list_node_pools(cluster_name),
        )

    def list_node_pools(self, cluster_name: str) -> List[NodePool]:
        """
        Describe every managed node group of the cluster

        Args:
            cluster_name: EKS cluster name

        Returns:
            List of node pools in API order
        """
        names: List[str] = []
        try:
            paginator = self.eks.get_paginator("list_nodegroups")
            for page in paginator.paginate(clusterName=cluster_name):
                names.extend(page.get("nodegroups", []))
        except ClientError as e:
            raise _gateway_error("list_nodegroups", f"failed to get node pool list {cluster_name}", e) from e
        return [self.describe_node_pool(cluster_name, name) for name in names]

    def describe_node_pool(self, cluster_name: str, node_pool_name: str) -> NodePool:
        try:
            response = self.eks.describe_nodegroup(clusterName=cluster_name, nodegroupName=node_pool_name)
        except ClientError as e:
            raise _gateway_error(
                "describe_nodegroup", f"failed to get node pool {cluster_name}/{node_pool_name}", e
            ) from e
        return self.to_node_pool(cluster_name, response["nodegroup"])

    def to_node_pool(self, cluster_name: str, info: Dict[str, Any]) -> NodePool:
        """
        Map a nodegroup description

        A node group autoscales when its max size exceeds its min size; each
        backing Auto Scaling group counts as one instance group.
        """
        scaling = info.get("scalingConfig") or {}
        min_size = int(scaling.get("minSize", 0))
        max_size = int(scaling.get("maxSize", 0))
        autoscale = max_size > min_size
        groups = (info.get("resources") or {}).get("autoScalingGroups") or []
        name = info["nodegroupName"]
        return NodePool(
            name=name,
            resource_url=(
                f"https://console.aws.amazon.com/eks/home?region={self.region}"
                f"#/clusters/{cluster_name}/nodegroups/{name}"
            ),
            preemptible=info.get("capacityType") == "SPOT",
            autoscale=autoscale,
            min_node_count=min_size if autoscale else 0,
            max_node_count=max_size if autoscale else 0,
            status=NODE_POOL_STATUS.get(info.get("status", ""), NodePoolStatus.UNKNOWN),
            instance_group_urls=[group["name"] for group in groups if group.get("name")],
        )

    def stop_instance(self, zone: str, instance_id: str) -> None:
        """
        Stop the instance behind a deleted node

        The instance is terminated through its Auto Scaling group without
        decrementing desired capacity, so the group launches a fresh one.

        Args:
            zone: Availability zone (for logging)
            instance_id: EC2 instance ID
        """
        logger.info(f"Stopping instance {instance_id} in {zone}...")
        try:
            self.autoscaling.terminate_instance_in_auto_scaling_group(
                InstanceId=instance_id,
                ShouldDecrementDesiredCapacity=False,
            )
        except ClientError as e:
            raise _gateway_error("stop_instance", f"failed to stop instance {instance_id}", e) from e
        logger.info(f"Stopped instance {instance_id}")


def _gateway_error(operation: str, message: str, e: ClientError) -> GatewayError:
    error = e.response.get("Error", {})
    status: Optional[int] = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    logger.error(f"{message}: {error.get('Code')} {error.get('Message')}")
    return GatewayError(operation, f"{message}: {error.get('Code')}: {error.get('Message')}", status)
