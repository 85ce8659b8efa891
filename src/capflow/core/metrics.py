"""
Metrics Collection Utilities

Tracks per-node execution for a single workflow run.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from .types import NodeMetrics, NodeStatus


class MetricsCollector:
    """
    Collect node metrics for one run.

    A fresh collector is created per run, so concurrent runs of the same
    graph never share one.
    """

    def __init__(self, name: str = "workflow"):
        """
        Initialize metrics collector.

        Args:
            name: Identifier for this collector (e.g., workflow name)
        """
        self.name = name
        self.node_metrics: Dict[str, NodeMetrics] = {}
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None

    def start(self) -> None:
        """Mark start of execution."""
        self.start_time = datetime.now()
        self.node_metrics = {}

    def stop(self) -> None:
        """Mark end of execution."""
        self.end_time = datetime.now()

    def record_node(
        self,
        node_name: str,
        duration_ms: float,
        status: NodeStatus,
        input_keys: Optional[List[str]] = None,
        output_keys: Optional[List[str]] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Record a node's terminal state.

        Args:
            node_name: Node identifier
            duration_ms: Execution time in milliseconds (0 if never ran)
            status: Terminal node status
            input_keys: Resolved input keys
            output_keys: Produced output keys
            error: Error message if failed/cancelled
        """
        self.node_metrics[node_name] = NodeMetrics(
            name=node_name,
            status=status,
            duration_ms=duration_ms,
            input_keys=input_keys or [],
            output_keys=output_keys or [],
            error_message=error,
        )

    def get_workflow_metrics(self) -> Dict[str, Any]:
        """
        Get detailed workflow metrics.

        Returns:
            Dict with workflow-level summary and per-node details
        """
        total_duration_ms = 0.0
        if self.start_time and self.end_time:
            total_duration_ms = (self.end_time - self.start_time).total_seconds() * 1000

        counts: Dict[str, int] = {}
        for m in self.node_metrics.values():
            counts[m.status.value] = counts.get(m.status.value, 0) + 1

        if counts.get(NodeStatus.CANCELLED.value):
            overall_status = "cancelled"
        elif counts.get(NodeStatus.FAILED.value) or counts.get(NodeStatus.SKIPPED.value):
            overall_status = "partial" if counts.get(NodeStatus.SUCCEEDED.value) else "failed"
        elif counts.get(NodeStatus.SUCCEEDED.value):
            overall_status = "success"
        else:
            overall_status = "unknown"

        return {
            "workflow_name": self.name,
            "overall_status": overall_status,
            "total_duration_ms": total_duration_ms,
            "nodes_executed": counts.get(NodeStatus.SUCCEEDED.value, 0)
            + counts.get(NodeStatus.FAILED.value, 0),
            "status_counts": counts,
            "nodes": {name: m.to_dict() for name, m in self.node_metrics.items()},
        }
