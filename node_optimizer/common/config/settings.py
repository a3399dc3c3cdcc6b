"""
Settings for the Node Optimizer

Provides Pydantic settings with environment variable support (prefix GNO_).
"""

from pydantic_settings import BaseSettings as PydanticBaseSettings
from pydantic import Field
from typing import Optional
from functools import lru_cache


class Settings(PydanticBaseSettings):
    """
    Node optimizer settings

    Every field can be set from the environment, e.g. GNO_CLUSTER_NAME.
    """

    # Target cluster
    project_id: str = Field(..., description="Cloud account / project ID")
    cluster_name: str = Field(..., description="Managed cluster name")
    cluster_location: str = Field(..., description="Cluster region")
    use_local_kube_config: bool = Field(False, description="Use ~/.kube/config instead of in-cluster config")

    # Optimization policy
    minimum_preemptible_node_count: int = Field(0, ge=0, description="Configured preemptible node floor")
    optimize_preemptible_node: bool = Field(True, description="Refresh the oldest preemptible node")
    optimize_autoscale_ondemand_node: bool = Field(True, description="Drain the least loaded autoscaled on-demand node")

    # Node label conventions
    node_pool_label: str = Field("eks.amazonaws.com/nodegroup", description="Label naming the owning node pool")
    preemptible_label: str = Field("eks.amazonaws.com/capacityType", description="Label marking preemptible capacity")
    preemptible_label_value: str = Field("SPOT", description="Value of preemptible_label on preemptible nodes")
    node_region_label: str = Field("topology.kubernetes.io/region", description="Region label")
    node_zone_label: str = Field("topology.kubernetes.io/zone", description="Zone label")
    node_name_prefix_template: Optional[str] = Field(
        None,
        description="Expected node name prefix, e.g. 'gke-{cluster}-{pool}' (None disables the check)"
    )

    # Refresh pacing
    eviction_backoff_seconds: float = Field(30.0, ge=0, description="Wait between disruption budget retries")
    eviction_max_attempts: int = Field(3, ge=1, description="Eviction attempts per pod")
    node_pacing_seconds: float = Field(60.0, ge=0, description="Wait between refreshed nodes")
    run_timeout_seconds: Optional[float] = Field(None, gt=0, description="Deadline for the whole run")

    # Reporting
    slack_bot_token: Optional[str] = Field(None, description="Slack bot token")
    slack_channel_id: Optional[str] = Field(None, description="Slack channel ID")
    report_timezone: str = Field("Asia/Tokyo", description="Timezone for report timestamps")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_format: str = Field("json", description="Log format (json, text)")

    class Config:
        env_prefix = "GNO_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """
    Get global settings instance (cached)

    Returns:
        Settings instance
    """
    return Settings()
