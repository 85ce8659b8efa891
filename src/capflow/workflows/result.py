"""Run-level results."""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from ..core.errors import FlowError
from ..core.types import NodeStatus


@dataclass(frozen=True)
class NodeResult:
    """Final state of one node after a run."""

    node_id: str
    capability_id: str
    status: NodeStatus
    outputs: Optional[Dict[str, Any]] = None
    error: Optional[FlowError] = None
    reason: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is NodeStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "capability_id": self.capability_id,
            "status": self.status.value,
            "outputs": self.outputs,
            "error": str(self.error) if self.error else None,
            "error_type": type(self.error).__name__ if self.error else None,
            "reason": self.reason,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class RunResult:
    """
    Complete result of a workflow run, returned even under partial failure.

    Attributes:
        run_id: Unique run identifier
        workflow_name: Name of the executed graph
        nodes: Per-node results keyed by node ID
        first_error: First error recorded during the run, if any
        cancelled: Whether the run's token was cancelled
        metrics: Workflow metrics summary
    """

    run_id: str
    workflow_name: str
    nodes: Mapping[str, NodeResult]
    first_error: Optional[FlowError] = None
    cancelled: bool = False
    metrics: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return all(r.succeeded for r in self.nodes.values())

    @property
    def outputs(self) -> Dict[str, Dict[str, Any]]:
        """Outputs of succeeded nodes."""
        return {nid: r.outputs for nid, r in self.nodes.items() if r.succeeded and r.outputs is not None}

    def status_of(self, node_id: str) -> NodeStatus:
        return self.nodes[node_id].status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "workflow_name": self.workflow_name,
            "succeeded": self.succeeded,
            "cancelled": self.cancelled,
            "first_error": str(self.first_error) if self.first_error else None,
            "nodes": {nid: r.to_dict() for nid, r in self.nodes.items()},
            "metrics": self.metrics,
        }
