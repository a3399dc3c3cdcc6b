"""
Node Optimizer

Periodically refreshes cluster nodes: replaces the oldest preemptible node
and drains the least loaded autoscaled on-demand node, keeping workloads
within their disruption budgets.
"""

__version__ = "1.0.0"
