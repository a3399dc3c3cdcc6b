"""
Run Reporters

Render a RunOutcome for humans. NullReporter does nothing; SlackReporter
posts a summary attachment to a channel with chat.postMessage.
"""

import math
import httpx
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote
from zoneinfo import ZoneInfo

from ..common.schemas import Node, RunOutcome
from .errors import NodeOptimizerError

logger = logging.getLogger(__name__)

COLOR_RED = "#FF0000"
COLOR_ORANGE = "#FFA500"
COLOR_GREEN = "#00FF00"

BULK_MAX_LENGTH = 20
POD_NAME_MAX_LENGTH = 40
SLACK_API_URL = "https://slack.com/api"
LOG_LINK_HOSTNAME_PREFIXES = ("node-optimizer-", "gke-node-optimizer-")


class ReportError(NodeOptimizerError):
    """Posting the report failed"""


class Reporter(Protocol):
    async def report(self, outcome: RunOutcome) -> None:
        ...


class NullReporter:
    """Reporter used when no notification channel is configured"""

    async def report(self, outcome: RunOutcome) -> None:
        return None


def short_duration(duration: timedelta) -> str:
    """Largest whole unit, e.g. 3h23m16s -> "03h" """
    seconds = int(duration.total_seconds())
    if seconds >= 86400:
        return f"{seconds // 86400:02d}d"
    if seconds >= 3600:
        return f"{seconds // 3600:02d}h"
    if seconds >= 60:
        return f"{seconds // 60:02d}m"
    return f"{seconds:02d}s"


def short_text(text: str, max_length: int) -> str:
    if len(text) < max_length:
        return text
    return text[:max_length] + "…"


def detail_log_link(outcome: RunOutcome) -> str:
    """CloudWatch Logs Insights link for this run, only when running as the optimizer pod"""
    if not outcome.hostname.startswith(LOG_LINK_HOSTNAME_PREFIXES) or outcome.cluster is None:
        return ""
    region = outcome.cluster.region
    log_group = quote(f"/aws/containerinsights/{outcome.cluster.name}/application", safe="")
    start_ms = int(outcome.start_time.timestamp() * 1000)
    return (
        f"https://console.aws.amazon.com/cloudwatch/home?region={region}"
        f"#logsV2:log-groups/log-group/{log_group}/log-events"
        f"$3FfilterPattern$3D{outcome.hostname}$26start$3D{start_ms}"
    )


class SlackReporter:
    """
    Posts a run summary to Slack

    Colour: red on error, orange when an on-demand node was drained (its
    capacity should be checked), green otherwise.
    """

    def __init__(
        self,
        token: str,
        channel_id: str,
        timezone_name: str = "Asia/Tokyo",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Slack reporter

        Args:
            token: Bot token
            channel_id: Target channel
            timezone_name: Timezone for start/end times
            http_client: Optional preconfigured client (tests)
        """
        self.channel_id = channel_id
        self.timezone = ZoneInfo(timezone_name)
        self.client = http_client or httpx.AsyncClient(
            base_url=SLACK_API_URL,
            headers={"Authorization": f"Bearer {token}"},
            timeout=30.0,
        )

    async def report(self, outcome: RunOutcome) -> None:
        payload = self.build_message(outcome)
        response = await self.client.post("/chat.postMessage", json=payload)
        response.raise_for_status()
        body = response.json()
        if not body.get("ok"):
            raise ReportError(f"failed to post slack message: {body.get('error', 'unknown error')}")
        logger.info("Posted report to slack", extra={"event": "report_posted", "channel": self.channel_id})

    async def close(self) -> None:
        await self.client.aclose()

    def build_message(self, outcome: RunOutcome) -> Dict[str, Any]:
        """Build the chat.postMessage payload"""
        color = COLOR_GREEN
        title = "Succeeded in optimize cluster nodes."
        message = "All tasks has been completed"
        if outcome.error is not None:
            color = COLOR_RED
            title = "Failed to optimize cluster nodes."
            message = outcome.error
        elif outcome.target_ondemand_autoscale_node is not None:
            color = COLOR_ORANGE
            title = "Succeeded in optimize cluster nodes, but there are some things to check."
            message = "All tasks has been completed. However uses autoscale nodes. Check the capacity is sufficient."
        detail = detail_log_link(outcome)
        if detail:
            title += " " + wrap_link("More detail information.", detail)

        cluster_link = "unknown"
        if outcome.cluster is not None:
            cluster_link = wrap_link(outcome.cluster.name, outcome.cluster.resource_url)
        pool_lines = [
            f"- {i:02d}: {wrap_link(pool.name, pool.resource_url)} (autoscale={str(pool.autoscale).lower()})"
            for i, pool in enumerate(outcome.active_node_pools, start=1)
        ] or ["none"]
        node_lines = [
            f"- {i:02d}: {node.name} (age={short_duration(node.age)}, pods={len(node.pods):02d})"
            for i, node in enumerate(outcome.active_nodes, start=1)
        ] or ["none"]

        end_time = outcome.end_time or datetime.now(timezone.utc)
        fields = [
            {"title": "Cluster name", "value": cluster_link, "short": True},
            {"title": "Cluster nodes count", "value": str(len(outcome.active_nodes)), "short": True},
            {"title": "Preemptible nodes count", "value": str(outcome.preemptible_node_actual_count), "short": True},
            {"title": "Preemptible nodes minimum count",
             "value": str(outcome.preemptible_node_minimum_count), "short": True},
            {"title": "Optimize start time",
             "value": outcome.start_time.astimezone(self.timezone).isoformat(timespec="seconds"), "short": True},
            {"title": "Optimize end time",
             "value": end_time.astimezone(self.timezone).isoformat(timespec="seconds"), "short": True},
        ]
        fields = append_field(fields, "Active node pools", pool_lines)
        fields = append_field(fields, "Active nodes", node_lines)
        fields = append_field(fields, "Refresh target preemptible node",
                              self._target_lines(outcome, outcome.target_preemptible_node))
        fields = append_field(fields, "Refresh target ondemand auto scale node",
                              self._target_lines(outcome, outcome.target_ondemand_autoscale_node))
        if message:
            fields.append({"title": "Message", "value": wrap_code_block(message)})

        return {
            "channel": self.channel_id,
            "text": title,
            "as_user": True,
            "unfurl_links": False,
            "unfurl_media": False,
            "attachments": [{"fields": fields, "color": color}],
        }

    def _target_lines(self, outcome: RunOutcome, node: Optional[Node]) -> List[str]:
        if node is None:
            return []
        lines = [f"{node.name} (age={short_duration(node.age)}, pods={len(node.pods):02d})"]
        for i, pod in enumerate(outcome.evicted_pods_by_node_name(node.name), start=1):
            lines.append(f"- {i:02d}: {short_text(pod.name, POD_NAME_MAX_LENGTH)} (ns={pod.namespace})")
        return lines


def append_field(fields: List[Dict[str, Any]], title: str, values: List[str]) -> List[Dict[str, Any]]:
    """Append values as one code block field, paged every BULK_MAX_LENGTH lines"""
    if not values:
        return fields
    if len(values) < BULK_MAX_LENGTH:
        fields.append({"title": title, "value": wrap_code_block("\n".join(values))})
        return fields
    pages = math.ceil(len(values) / BULK_MAX_LENGTH)
    for page in range(pages):
        chunk = values[page * BULK_MAX_LENGTH:(page + 1) * BULK_MAX_LENGTH]
        fields.append({
            "title": f"{title} ({page + 1}/{pages})",
            "value": wrap_code_block("\n".join(chunk)),
        })
    return fields


def wrap_code_block(text: str) -> str:
    return f"```\n{text}\n```"


def wrap_link(text: str, link: str) -> str:
    if not link:
        return text
    return f"<{link}|{text}>"
