"""
Workflow Graph

Parses a flow definition into an immutable graph of nodes whose edges are
derived from input bindings, and validates it against a registry.

Flow definition format:

    {
        "name": "voice-reply",
        "nodes": [
            {"id": "asr", "capabilityId": "speech_recognition",
             "inputBindings": {"audio": {"sourceNodeId": "$input", "outputKey": "audio"}}},
            {"id": "chat", "capabilityId": "openai_chat",
             "config": {"temperature": 0.2},
             "inputBindings": {"messages": [...literal...]}},
        ]
    }

A binding is a literal value, or a reference: a mapping with exactly the keys
``sourceNodeId`` and ``outputKey`` (snake_case accepted). The reserved source
``$input`` reads from the run's initial inputs.
"""

import copy
import json
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.errors import GraphError, GraphErrorKind, NotFoundError

if TYPE_CHECKING:
    from ..registry import CapabilityRegistry

RUN_INPUT = "$input"

_REFERENCE_KEYS = (
    frozenset({"sourceNodeId", "outputKey"}),
    frozenset({"source_node_id", "output_key"}),
)


@dataclass(frozen=True)
class Reference:
    """Binding that reads ``output_key`` from another node's outputs."""
    source_node_id: str
    output_key: str

    @property
    def is_run_input(self) -> bool:
        return self.source_node_id == RUN_INPUT


def parse_binding(value: Any) -> Any:
    """Return a Reference for reference-shaped mappings, else the literal."""
    if isinstance(value, Reference):
        return value
    if isinstance(value, Mapping) and frozenset(value.keys()) in _REFERENCE_KEYS:
        source = value.get("sourceNodeId", value.get("source_node_id"))
        key = value.get("outputKey", value.get("output_key"))
        if isinstance(source, str) and isinstance(key, str) and source and key:
            return Reference(source_node_id=source, output_key=key)
    return value


# =============================================================================
# Definition models (wire format)
# =============================================================================

class NodeDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    id: str = Field(min_length=1)
    capability_id: str = Field(alias="capabilityId", min_length=1)
    config: Dict[str, Any] = Field(default_factory=dict)
    input_bindings: Dict[str, Any] = Field(default_factory=dict, alias="inputBindings")


class FlowDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = "workflow"
    nodes: List[NodeDefinition]


# =============================================================================
# Graph
# =============================================================================

@dataclass(frozen=True)
class WorkflowNode:
    """A node bound to a capability. Config and bindings are read-only."""
    id: str
    capability_id: str
    config: Mapping[str, Any]
    input_bindings: Mapping[str, Any]

    @classmethod
    def create(
        cls,
        id: str,
        capability_id: str,
        config: Optional[Mapping[str, Any]] = None,
        input_bindings: Optional[Mapping[str, Any]] = None,
    ) -> "WorkflowNode":
        bindings = {name: parse_binding(v) for name, v in (input_bindings or {}).items()}
        return cls(
            id=id,
            capability_id=capability_id,
            config=MappingProxyType(copy.deepcopy(dict(config or {}))),
            input_bindings=MappingProxyType(copy.deepcopy(bindings)),
        )

    @property
    def references(self) -> List[Reference]:
        return [b for b in self.input_bindings.values() if isinstance(b, Reference)]

    @property
    def dependencies(self) -> Tuple[str, ...]:
        """IDs of nodes this node reads from (run input excluded), deduplicated."""
        seen: Dict[str, None] = {}
        for ref in self.references:
            if not ref.is_run_input:
                seen.setdefault(ref.source_node_id, None)
        return tuple(seen)


class WorkflowGraph:
    """
    Immutable graph of workflow nodes.

    Usage:
        graph = WorkflowGraph.from_definition(flow_json).validate(registry)
        result = await engine.run(graph, inputs={"audio": "..."})
    """

    def __init__(self, nodes: Iterable[WorkflowNode], name: str = "workflow"):
        """
        Build a graph.

        Args:
            nodes: Workflow nodes
            name: Graph name for logs/metrics

        Raises:
            GraphError: Duplicate node IDs
        """
        self.name = name
        by_id: Dict[str, WorkflowNode] = {}
        for node in nodes:
            if node.id in by_id:
                raise GraphError(
                    GraphErrorKind.DUPLICATE_NODE, f"Duplicate node id: {node.id}", [node.id]
                )
            by_id[node.id] = node
        self._nodes: Mapping[str, WorkflowNode] = MappingProxyType(by_id)

        dependents: Dict[str, List[str]] = {nid: [] for nid in by_id}
        for node in by_id.values():
            for dep in node.dependencies:
                if dep in dependents:
                    dependents[dep].append(node.id)
        self._dependents: Mapping[str, Tuple[str, ...]] = MappingProxyType(
            {nid: tuple(ds) for nid, ds in dependents.items()}
        )
        self._validated = False

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_definition(cls, definition: Union[Mapping[str, Any], FlowDefinition]) -> "WorkflowGraph":
        """
        Parse a flow definition.

        Raises:
            GraphError: INVALID_DEFINITION for malformed input, DUPLICATE_NODE
        """
        try:
            flow = (
                definition
                if isinstance(definition, FlowDefinition)
                else FlowDefinition.model_validate(definition)
            )
        except ValidationError as e:
            raise GraphError(GraphErrorKind.INVALID_DEFINITION, str(e)) from e

        nodes = [
            WorkflowNode.create(n.id, n.capability_id, n.config, n.input_bindings)
            for n in flow.nodes
        ]
        return cls(nodes, name=flow.name)

    @classmethod
    def from_json(cls, text: str) -> "WorkflowGraph":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise GraphError(GraphErrorKind.INVALID_DEFINITION, f"Invalid JSON: {e}") from e
        return cls.from_definition(data)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def nodes(self) -> Tuple[WorkflowNode, ...]:
        return tuple(self._nodes.values())

    @property
    def node_ids(self) -> Tuple[str, ...]:
        return tuple(self._nodes)

    @property
    def is_validated(self) -> bool:
        return self._validated

    def node(self, node_id: str) -> WorkflowNode:
        return self._nodes[node_id]

    def dependencies(self, node_id: str) -> Tuple[str, ...]:
        return self._nodes[node_id].dependencies

    def dependents(self, node_id: str) -> Tuple[str, ...]:
        return self._dependents[node_id]

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, registry: "CapabilityRegistry") -> "WorkflowGraph":
        """
        Validate against a registry. Runs once; later calls are no-ops.

        Checks, in order: capabilities resolve, no cycles, no dangling
        references, node config overrides pass the factory's validation.

        Returns:
            self, for chaining

        Raises:
            GraphError: UNKNOWN_CAPABILITY, CYCLE_DETECTED, DANGLING_REFERENCE
            ConfigError: A node's config overrides are invalid
        """
        if self._validated:
            return self

        for node in self._nodes.values():
            if node.capability_id not in registry:
                raise GraphError(
                    GraphErrorKind.UNKNOWN_CAPABILITY,
                    f"Node {node.id!r} uses unknown capability {node.capability_id!r}",
                    [node.id],
                )

        cycle = self._find_cycle()
        if cycle:
            raise GraphError(
                GraphErrorKind.CYCLE_DETECTED,
                "Cycle detected: " + " -> ".join(cycle),
                cycle,
            )

        for node in self._nodes.values():
            for name, ref in node.input_bindings.items():
                if isinstance(ref, Reference) and not ref.is_run_input and ref.source_node_id not in self._nodes:
                    raise GraphError(
                        GraphErrorKind.DANGLING_REFERENCE,
                        f"Node {node.id!r} input {name!r} references unknown node {ref.source_node_id!r}",
                        [node.id, ref.source_node_id],
                    )

        for node in self._nodes.values():
            try:
                registry.validate_node_config(node.capability_id, dict(node.config))
            except NotFoundError as e:
                raise GraphError(
                    GraphErrorKind.UNKNOWN_CAPABILITY, str(e), [node.id]
                ) from e

        self._validated = True
        return self

    def _find_cycle(self) -> Optional[List[str]]:
        """Depth-first search tracking the recursion stack; returns the cycle path."""
        WHITE, GRAY, BLACK = 0, 1, 2
        color = {nid: WHITE for nid in self._nodes}

        for root in self._nodes:
            if color[root] != WHITE:
                continue
            color[root] = GRAY
            path = [root]
            stack = [iter(self._dependents[root])]
            while stack:
                child = next(stack[-1], None)
                if child is None:
                    color[path.pop()] = BLACK
                    stack.pop()
                    continue
                if color[child] == GRAY:
                    return path[path.index(child):] + [child]
                if color[child] == WHITE:
                    color[child] = GRAY
                    path.append(child)
                    stack.append(iter(self._dependents[child]))
        return None

    def topological_order(self) -> List[str]:
        """Kahn ordering; ties keep definition order. Assumes no cycles."""
        remaining = {nid: len([d for d in self.dependencies(nid) if d in self._nodes]) for nid in self._nodes}
        order = [nid for nid, count in remaining.items() if count == 0]
        i = 0
        while i < len(order):
            for dep in self._dependents[order[i]]:
                remaining[dep] -= 1
                if remaining[dep] == 0:
                    order.append(dep)
            i += 1
        return order

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def visualize(self) -> str:
        """
        ASCII listing of the graph in dependency order.

        Returns:
            Multi-line string, one line per node with its sources
        """
        lines = [
            f"Workflow: {self.name}",
            f"Nodes: {len(self._nodes)} ({', '.join(self._nodes)})",
            "",
        ]
        for nid in self.topological_order():
            node = self._nodes[nid]
            sources = ", ".join(node.dependencies) or "START"
            lines.append(f"  [{nid}] <{node.capability_id}> <- {sources}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        edges = sum(len(ds) for ds in self._dependents.values())
        return f"WorkflowGraph(name={self.name!r}, nodes={len(self._nodes)}, edges={edges})"

    def __str__(self) -> str:
        return self.visualize()
