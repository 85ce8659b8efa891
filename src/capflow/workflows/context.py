"""
Execution Context

Per-run state: node statuses, recorded outputs, errors and the cancellation
token. Only the scheduler loop writes outputs, once per node; dependents read
them as read-only mappings.
"""

import copy
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from ..core.abstractions import CancellationToken
from ..core.errors import ExecutionError, FlowError
from ..core.types import NodeStatus
from .graph import Reference, WorkflowGraph, WorkflowNode

_TRANSITIONS = {
    NodeStatus.PENDING: {NodeStatus.READY, NodeStatus.SKIPPED, NodeStatus.CANCELLED},
    NodeStatus.READY: {NodeStatus.RUNNING, NodeStatus.CANCELLED},
    NodeStatus.RUNNING: {NodeStatus.SUCCEEDED, NodeStatus.FAILED, NodeStatus.CANCELLED},
}


class ExecutionContext:
    """Mutable state of a single run of a WorkflowGraph."""

    def __init__(
        self,
        graph: WorkflowGraph,
        inputs: Optional[Mapping[str, Any]] = None,
        token: Optional[CancellationToken] = None,
    ):
        self.graph = graph
        self.token = token or CancellationToken()
        self.run_inputs: Mapping[str, Any] = MappingProxyType(copy.deepcopy(dict(inputs or {})))
        self.statuses: Dict[str, NodeStatus] = {nid: NodeStatus.PENDING for nid in graph.node_ids}
        self.errors: Dict[str, FlowError] = {}
        self.reasons: Dict[str, str] = {}
        self.durations: Dict[str, float] = {}
        self.first_error: Optional[FlowError] = None
        self._outputs: Dict[str, Mapping[str, Any]] = {}

    def status(self, node_id: str) -> NodeStatus:
        return self.statuses[node_id]

    def transition(self, node_id: str, status: NodeStatus) -> None:
        """
        Move a node to a new status.

        Raises:
            RuntimeError: Transition not allowed by the node state machine
        """
        current = self.statuses[node_id]
        if status not in _TRANSITIONS.get(current, ()):
            raise RuntimeError(f"Illegal transition for {node_id!r}: {current.value} -> {status.value}")
        self.statuses[node_id] = status

    def record_success(self, node_id: str, outputs: Mapping[str, Any]) -> None:
        if node_id in self._outputs:
            raise RuntimeError(f"Outputs of {node_id!r} already recorded")
        self.transition(node_id, NodeStatus.SUCCEEDED)
        self._outputs[node_id] = MappingProxyType(copy.deepcopy(dict(outputs)))

    def record_error(self, node_id: str, status: NodeStatus, error: FlowError) -> None:
        self.transition(node_id, status)
        self.errors[node_id] = error
        if self.first_error is None:
            self.first_error = error

    def record_skip(self, node_id: str, reason: str) -> None:
        self.transition(node_id, NodeStatus.SKIPPED)
        self.reasons[node_id] = reason

    def outputs_of(self, node_id: str) -> Mapping[str, Any]:
        return self._outputs[node_id]

    def has_outputs(self, node_id: str) -> bool:
        return node_id in self._outputs

    def resolve_inputs(self, node: WorkflowNode) -> Dict[str, Any]:
        """
        Build a node's inputs from its bindings.

        Literals are copied through; references read the source node's
        recorded outputs (or the run inputs for ``$input``).

        Raises:
            ExecutionError: A referenced key is absent
        """
        resolved: Dict[str, Any] = {}
        for name, binding in node.input_bindings.items():
            if not isinstance(binding, Reference):
                resolved[name] = copy.deepcopy(binding)
                continue
            if binding.is_run_input:
                source, label = self.run_inputs, "run inputs"
            else:
                source = self._outputs.get(binding.source_node_id, {})
                label = f"node {binding.source_node_id!r}"
            if binding.output_key not in source:
                raise ExecutionError(
                    node.capability_id,
                    f"input {name!r}: {label} has no key {binding.output_key!r}",
                    node_id=node.id,
                )
            resolved[name] = copy.deepcopy(source[binding.output_key])
        return resolved
