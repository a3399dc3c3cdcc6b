"""
Node Optimizer Errors

Precondition errors stop a run before any mutation. Refresh errors happen
mid-protocol and carry the pods evicted before the failure, so callers can
report partial progress.
"""

from typing import List, Optional, Sequence

from ..common.schemas import Pod


class NodeOptimizerError(Exception):
    """Base class for all node optimizer errors"""


class GatewayError(NodeOptimizerError):
    """A cluster or cloud API call failed"""
    def __init__(self, operation: str, message: str, status: Optional[int] = None):
        self.operation = operation
        self.status = status
        super().__init__(f"{operation}: {message}")


class DisruptionBudgetViolation(GatewayError):
    """Eviction refused because it would violate a pod disruption budget"""
    def __init__(self, namespace: str, name: str, message: str = "", status: Optional[int] = 429):
        self.namespace = namespace
        self.pod_name = name
        super().__init__(
            "evict_pod",
            f"{namespace}/{name} would violate the pod's disruption budget {message}".rstrip(),
            status=status,
        )


class EvictionThrottledError(GatewayError):
    """Eviction rejected with 429 by API server flow control, not by a budget"""
    def __init__(self, namespace: str, name: str, message: str = "", status: Optional[int] = 429):
        self.namespace = namespace
        self.pod_name = name
        super().__init__("evict_pod", f"{namespace}/{name} throttled by the API server {message}".rstrip(), status=status)


# Preconditions

class PreconditionError(NodeOptimizerError):
    """Cluster state does not allow any mutation"""


class ClusterNotRunningError(PreconditionError):
    def __init__(self, cluster_name: str, status: str):
        self.cluster_name = cluster_name
        self.status = status
        super().__init__(f"cluster status is not running: name={cluster_name}, status={status}")


class PoolNotRunningError(PreconditionError):
    def __init__(self, pool_name: str, status: str):
        self.pool_name = pool_name
        self.status = status
        super().__init__(f"detected not running node pool: name={pool_name}, status={status}")


class NoPreemptiblePoolError(PreconditionError):
    def __init__(self):
        super().__init__("preemptible node pool does not exist")


class NoNodesError(PreconditionError):
    def __init__(self):
        super().__init__("node does not exist")


class NodeNotReadyError(PreconditionError):
    def __init__(self, node_name: str):
        self.node_name = node_name
        super().__init__(f"detected not ready node: name={node_name}")


class InsufficientPreemptibleCapacityError(PreconditionError):
    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"the minimum number of preemptible nodes condition is not satisfied: "
            f"expect={expected}, actual={actual}"
        )


# Refresh protocol

class RefreshError(NodeOptimizerError):
    """
    A refresh step failed

    evicted_pods holds every pod evicted before the failure; it is never
    dropped on the way up.
    """
    def __init__(self, message: str, node_name: str = "", evicted_pods: Optional[Sequence[Pod]] = None):
        self.node_name = node_name
        self.evicted_pods: List[Pod] = list(evicted_pods or [])
        super().__init__(message)


class NodeResolutionError(RefreshError):
    """A target node could not be fetched before refreshing"""


class CordonError(RefreshError):
    pass


class DrainError(RefreshError):
    pass


class EvictionRetryExhaustedError(DrainError):
    """Eviction kept being refused (budget or throttling) after every attempt"""
    def __init__(
        self, node_name: str, pod: Pod, attempts: int, evicted_pods: Sequence[Pod] = (), reason: str = ""
    ):
        self.pod = pod
        self.attempts = attempts
        self.reason = reason
        message = f"failed to evict pod {pod.namespace}/{pod.name} because give up. count={attempts}"
        super().__init__(
            f"{message}: {reason}" if reason else message,
            node_name=node_name,
            evicted_pods=evicted_pods,
        )


class TerminationError(RefreshError):
    pass


class UnexpectedSchedulableStateError(TerminationError):
    """Node became schedulable between drain and delete"""
    def __init__(self, node_name: str, evicted_pods: Sequence[Pod] = ()):
        super().__init__(
            f"detect schedulable flag, aborting delete node {node_name}",
            node_name=node_name,
            evicted_pods=evicted_pods,
        )


class RollbackError(RefreshError):
    """
    Uncordon failed while unwinding a failed refresh

    primary is the error that triggered the rollback (None when the refresh
    itself succeeded); rollback_errors lists every uncordon failure.
    """
    def __init__(
        self,
        primary: Optional[BaseException],
        rollback_errors: Sequence[BaseException],
        evicted_pods: Sequence[Pod] = (),
    ):
        self.primary = primary
        self.rollback_errors = list(rollback_errors)
        details = "; ".join(str(e) for e in self.rollback_errors)
        if primary is None:
            message = f"rollback failed: {details}"
        else:
            message = f"{primary} (rollback failed: {details})"
        node_name = getattr(primary, "node_name", "")
        super().__init__(message, node_name=node_name, evicted_pods=evicted_pods)


class RefreshFailedError(NodeOptimizerError):
    """Raised by the optimizer when refreshing the selected nodes failed"""
    def __init__(self, cause: BaseException):
        self.evicted_pods: List[Pod] = list(getattr(cause, "evicted_pods", []))
        super().__init__(f"failed to refresh nodes: {cause}")
