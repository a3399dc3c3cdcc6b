"""
Node Optimizer - Entry Point
============================

One optimization pass per invocation (run it from a CronJob):
1. Load settings from the environment (GNO_*)
2. Build the cluster gateway and the core services
3. Optimize, under an optional deadline; SIGTERM/SIGINT cancel the run and
   still roll back cordoned nodes
4. Report the outcome and exit 0 on success, 1 otherwise

Usage:
    python -m node_optimizer
    node-optimizer
"""

import asyncio
import logging
import signal
import socket
import sys

from pydantic import ValidationError

from .common.config import Settings, get_settings, setup_logging
from .common.schemas import OptimizerOption, RunOutcome
from .services.cluster_gateway import ClusterGateway
from .services.node_refresher import NodeRefresher
from .services.optimizer import NodeOptimizer
from .services.refresh_orchestrator import RefreshOrchestrator
from .services.reporter import NullReporter, Reporter, SlackReporter

logger = logging.getLogger(__name__)

SERVICE_NAME = "node-optimizer"


def build_reporter(settings: Settings) -> Reporter:
    if settings.slack_bot_token and settings.slack_channel_id:
        return SlackReporter(settings.slack_bot_token, settings.slack_channel_id, settings.report_timezone)
    logger.info("Slack is not configured, reports are disabled")
    return NullReporter()


def build_optimizer(settings: Settings, gateway: ClusterGateway, outcome: RunOutcome) -> NodeOptimizer:
    """Wire the core services against the gateway"""
    refresher = NodeRefresher(
        gateway,
        eviction_backoff_seconds=settings.eviction_backoff_seconds,
        eviction_max_attempts=settings.eviction_max_attempts,
    )
    orchestrator = RefreshOrchestrator(gateway, refresher, pacing_seconds=settings.node_pacing_seconds)
    option = OptimizerOption(
        minimum_preemptible_node_count=settings.minimum_preemptible_node_count,
        optimize_preemptible_node=settings.optimize_preemptible_node,
        optimize_autoscale_ondemand_node=settings.optimize_autoscale_ondemand_node,
    )
    return NodeOptimizer(gateway, orchestrator, option, outcome)


async def optimize_with_deadline(optimizer: NodeOptimizer, timeout_seconds=None) -> RunOutcome:
    """
    Run the optimizer as a task that SIGTERM/SIGINT and the deadline cancel

    Cancellation still unwinds the refresh (cordoned nodes are uncordoned)
    before this returns.
    """
    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(optimizer.optimize())
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, task.cancel)
        except (NotImplementedError, RuntimeError):
            # Not on the main thread, or the platform has no signal support
            pass

    try:
        if timeout_seconds:
            await asyncio.wait_for(task, timeout_seconds)
        else:
            await task
    except asyncio.TimeoutError:
        optimizer.outcome.error = "optimization deadline exceeded"
        logger.error(
            f"Optimization exceeded the deadline of {timeout_seconds:g} seconds",
            extra={"event": "optimization_deadline_exceeded", "timeout_seconds": timeout_seconds},
        )
    except asyncio.CancelledError:
        logger.warning("Optimization interrupted by signal", extra={"event": "optimization_interrupted"})
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass
    return optimizer.outcome


async def run(settings: Settings) -> RunOutcome:
    """Run one pass and report it; never raises for run failures"""
    outcome = RunOutcome(project_id=settings.project_id, hostname=socket.gethostname())
    reporter = build_reporter(settings)
    try:
        try:
            gateway = ClusterGateway.from_settings(settings)
        except Exception as e:
            outcome.set_error(e)
            logger.exception(f"Failed to create cluster clients: {e}", extra={"event": "gateway_init_failed"})
        else:
            optimizer = build_optimizer(settings, gateway, outcome)
            await optimize_with_deadline(optimizer, settings.run_timeout_seconds)

        try:
            await reporter.report(outcome)
        except Exception as e:
            logger.error(f"Failed to report outcome: {e}", extra={"event": "report_failed"})
    finally:
        if isinstance(reporter, SlackReporter):
            await reporter.close()
    return outcome


def main():
    """Main entry point"""
    try:
        settings = get_settings()
    except ValidationError as e:
        setup_logging(SERVICE_NAME)
        logger.error(f"Invalid configuration: {e}", extra={"event": "invalid_configuration"})
        sys.exit(1)

    setup_logging(SERVICE_NAME, log_level=settings.log_level, log_format=settings.log_format)
    logger.info(
        f"Starting {SERVICE_NAME} for cluster {settings.cluster_name}",
        extra={"event": "optimizer_started", "cluster": settings.cluster_name,
               "location": settings.cluster_location},
    )

    outcome = asyncio.run(run(settings))
    if not outcome.succeeded:
        logger.error(f"Optimization failed: {outcome.error}", extra={"event": "optimizer_finished"})
        sys.exit(1)
    logger.info("Optimization completed", extra={"event": "optimizer_finished"})
    sys.exit(0)


if __name__ == "__main__":
    main()
