"""
Node Optimizer - Refresh State Machine
======================================

Moves one node through READY -> CORDONED -> DRAINED -> TERMINATED, or back
to schedulable (ROLLED_BACK) when any step before deletion fails.

Rules:
- Cordon and uncordon are idempotent
- The eviction API version is discovered once per refresher instance (one run)
- A disruption budget refusal or an API server throttle is retried after a
  fixed backoff, at most max_attempts times in total; any other eviction
  error aborts at once
- A mutating call in flight when the run is cancelled is allowed to land
  before the cancellation propagates, so rollback sees the real state
- Only preemptible nodes are terminated; on-demand nodes are drained and
  then uncordoned, leaving their removal to the cluster autoscaler
- Before deletion the node is re-read and must still be unschedulable
- Once the node object is deleted it is never uncordoned or re-created
- A failed uncordon never hides the error that triggered the rollback

Partial progress is observable: pods are appended to the caller's evicted
list as soon as each eviction succeeds, and every RefreshError carries a
copy of that list.
"""

from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional
import asyncio
import functools
import logging

from ..common.schemas import Node, Pod, RefreshOutcome, RefreshState
from .errors import (
    CordonError,
    DisruptionBudgetViolation,
    DrainError,
    EvictionRetryExhaustedError,
    EvictionThrottledError,
    RefreshError,
    RollbackError,
    TerminationError,
    UnexpectedSchedulableStateError,
)
from .gateways import NodeLifecycleGateway

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]

DEFAULT_EVICTION_BACKOFF_SECONDS = 30.0
DEFAULT_EVICTION_MAX_ATTEMPTS = 3


async def settle(call: Awaitable[Any], on_landed: Optional[Callable[[], None]] = None) -> Any:
    """
    Await a mutating gateway call that cancellation must not abandon

    The gateway runs blocking SDK calls in worker threads, which keep going
    after the awaiting task is cancelled. On cancellation this waits for the
    call to finish, runs on_landed if it succeeded, then re-raises.
    """
    task = asyncio.ensure_future(call)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        await asyncio.wait({task})
        if on_landed is not None and not task.cancelled() and task.exception() is None:
            on_landed()
        raise


class PendingRollback:
    """Ordered set of cordoned, not yet deleted node names to uncordon on exit"""

    def __init__(self):
        self._names: Dict[str, None] = {}

    def add(self, node_name: str) -> None:
        self._names[node_name] = None

    def discard(self, node_name: str) -> None:
        self._names.pop(node_name, None)

    def __contains__(self, node_name: object) -> bool:
        return node_name in self._names

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._names))

    def __len__(self) -> int:
        return len(self._names)


class NodeRefresher:
    """
    Cordon / drain / terminate protocol for a single node

    The step methods (cordon, drain, terminate, rollback) are also used by
    RefreshOrchestrator, which shares one PendingRollback across targets.

    Usage:
        refresher = NodeRefresher(gateway)
        outcome = await refresher.refresh(node)
    """

    def __init__(
        self,
        gateway: NodeLifecycleGateway,
        eviction_backoff_seconds: float = DEFAULT_EVICTION_BACKOFF_SECONDS,
        eviction_max_attempts: int = DEFAULT_EVICTION_MAX_ATTEMPTS,
        sleep: Sleeper = asyncio.sleep,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize the refresher

        Args:
            gateway: Node lifecycle operations
            eviction_backoff_seconds: Wait after a disruption budget refusal
            eviction_max_attempts: Total eviction attempts per pod
            sleep: Cancellable sleep (asyncio.sleep outside tests)
            log: Logger receiving structured events
        """
        if eviction_max_attempts < 1:
            raise ValueError("eviction_max_attempts must be at least 1")
        self.gateway = gateway
        self.eviction_backoff_seconds = eviction_backoff_seconds
        self.eviction_max_attempts = eviction_max_attempts
        self.sleep = sleep
        self.logger = log or logger
        self._eviction_api_version: Optional[str] = None

    async def eviction_api_version(self, node_name: str = "") -> str:
        """Discovered once; "" means no PDB-aware eviction API, which is not an error"""
        if self._eviction_api_version is None:
            try:
                version = await self.gateway.discover_eviction_api_version()
            except Exception as e:
                raise DrainError(
                    f"failed to get policy version of node {node_name}: {e}", node_name=node_name
                ) from e
            self._eviction_api_version = version or ""
            self.logger.info(
                f"Eviction API version: {self._eviction_api_version or 'unavailable'}",
                extra={"event": "eviction_api_discovered", "api_version": self._eviction_api_version},
            )
        return self._eviction_api_version

    async def cordon(self, node: Node, pending: PendingRollback) -> None:
        """
        Mark the node unschedulable

        The node joins the rollback set before the call: a cordon that lands
        server side after a timeout or cancellation is still undone.
        """
        pending.add(node.name)
        try:
            await settle(self.gateway.cordon(node.name))
        except Exception as e:
            raise CordonError(f"failed to cordon node {node.name}: {e}", node_name=node.name) from e
        self.logger.info(
            f"Cordoned node: {node.name}",
            extra={"event": "node_cordoned", "node": node.name},
        )

    async def drain(self, node: Node, evicted: List[Pod]) -> List[Pod]:
        """
        Evict every pod bound to the node

        Args:
            node: Node snapshot with its pods
            evicted: Run-wide list; each evicted pod is appended immediately

        Returns:
            Pods evicted from this node

        Raises:
            DrainError (EvictionRetryExhaustedError when the eviction is never allowed)
        """
        drained: List[Pod] = []
        try:
            api_version = await self.eviction_api_version(node.name)
        except RefreshError as e:
            e.evicted_pods = list(evicted)
            raise
        for pod in node.pods:
            try:
                await self._evict_with_retry(
                    node, pod, api_version,
                    on_evicted=functools.partial(self._record_eviction, node, pod, drained, evicted),
                )
            except RefreshError as e:
                e.evicted_pods = list(evicted)
                raise
        return drained

    def _record_eviction(self, node: Node, pod: Pod, drained: List[Pod], evicted: List[Pod]) -> None:
        drained.append(pod)
        evicted.append(pod)
        self.logger.info(
            f"Succeeded in evicting pod {pod.name} on node {node.name}",
            extra={"event": "pod_evicted", "node": node.name, "pod": pod.name, "namespace": pod.namespace},
        )

    async def _evict_with_retry(
        self, node: Node, pod: Pod, api_version: str, on_evicted: Callable[[], None]
    ) -> None:
        for attempt in range(1, self.eviction_max_attempts + 1):
            try:
                await settle(self.gateway.evict_pod(pod.namespace, pod.name, api_version), on_landed=on_evicted)
            except (DisruptionBudgetViolation, EvictionThrottledError) as e:
                if attempt >= self.eviction_max_attempts:
                    raise EvictionRetryExhaustedError(node.name, pod, attempt, reason=str(e)) from e
                throttled = isinstance(e, EvictionThrottledError)
                self.logger.warning(
                    f"Waiting {self.eviction_backoff_seconds:g} seconds for evicted pod to running "
                    f"{pod.name}. count={attempt}: {e}",
                    extra={"event": "eviction_throttled" if throttled else "eviction_blocked",
                           "node": node.name, "pod": pod.name, "namespace": pod.namespace, "attempt": attempt},
                )
                await self.sleep(self.eviction_backoff_seconds)
                continue
            except Exception as e:
                raise DrainError(
                    f"failed to evict pod {pod.namespace}/{pod.name}. count={attempt}: {e}",
                    node_name=node.name,
                ) from e
            on_evicted()
            return

    async def terminate(self, node: Node, pending: PendingRollback, evicted: List[Pod]) -> None:
        """
        Delete the node object and stop its instance

        The node leaves the rollback set as soon as the object is deleted,
        even when the deletion lands after the run was cancelled.
        """
        try:
            unschedulable = await self.gateway.is_unschedulable(node.name)
        except Exception as e:
            raise TerminationError(
                f"failed to get node {node.name}: {e}", node_name=node.name, evicted_pods=evicted
            ) from e
        if not unschedulable:
            raise UnexpectedSchedulableStateError(node.name, evicted)

        try:
            await settle(self.gateway.delete_node(node.name), on_landed=lambda: pending.discard(node.name))
        except Exception as e:
            raise TerminationError(
                f"failed to delete node {node.name}: {e}", node_name=node.name, evicted_pods=evicted
            ) from e
        pending.discard(node.name)
        self.logger.info(
            f"Succeeded in deleting node: {node.name}",
            extra={"event": "node_deleted", "node": node.name},
        )

        try:
            await self.gateway.stop_instance(node.zone, node.instance_id or node.name)
        except Exception as e:
            raise TerminationError(
                f"failed to stop instance {node.name}: {e}", node_name=node.name, evicted_pods=evicted
            ) from e
        self.logger.info(
            f"Succeeded in stopping instance: {node.name}",
            extra={"event": "instance_stopped", "node": node.name, "zone": node.zone,
                   "instance_id": node.instance_id},
        )

    async def process(self, node: Node, pending: PendingRollback, evicted: List[Pod]) -> RefreshState:
        """Drain a cordoned node and terminate it if preemptible"""
        await self.drain(node, evicted)
        if not node.preemptible:
            return RefreshState.DRAINED
        await self.terminate(node, pending, evicted)
        return RefreshState.TERMINATED

    async def rollback(
        self,
        pending: PendingRollback,
        primary: Optional[BaseException],
        evicted: List[Pod],
    ) -> None:
        """
        Uncordon every node still pending

        Raises:
            RollbackError joining uncordon failures onto primary. Cancellation
            is never converted: failures are logged and the caller re-raises
            CancelledError.
        """
        failures: List[BaseException] = []
        for node_name in pending:
            try:
                await self.gateway.uncordon(node_name)
            except Exception as e:
                failures.append(RefreshError(f"failed to uncordon node {node_name}: {e}", node_name=node_name))
                self.logger.error(
                    f"Failed to uncordon node {node_name}: {e}",
                    extra={"event": "rollback_failed", "node": node_name},
                )
                continue
            pending.discard(node_name)
            self.logger.info(
                f"Uncordoned node: {node_name}",
                extra={"event": "node_uncordoned", "node": node_name},
            )
        if failures and not isinstance(primary, asyncio.CancelledError):
            raise RollbackError(primary, failures, evicted) from primary

    async def refresh(self, node: Node, evicted: Optional[List[Pod]] = None) -> RefreshOutcome:
        """
        Run the full protocol on one node

        Args:
            node: Node snapshot with its pods
            evicted: Optional run-wide evicted pod list

        Returns:
            RefreshOutcome with success=True

        Raises:
            RefreshError (or RollbackError) with the pods evicted so far
        """
        evicted = evicted if evicted is not None else []
        start = len(evicted)
        pending = PendingRollback()
        primary: Optional[BaseException] = None
        try:
            await self.cordon(node, pending)
            state = await self.process(node, pending, evicted)
        except BaseException as e:
            primary = e
            raise
        finally:
            # A drained on-demand node is handed back to the autoscaler schedulable
            await self.rollback(pending, primary, evicted)
        return RefreshOutcome(
            node_name=node.name,
            preemptible=node.preemptible,
            state=state,
            success=True,
            evicted_pods=evicted[start:],
        )
