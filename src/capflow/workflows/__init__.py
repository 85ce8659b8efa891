"""
Workflow graphs and the engine that runs them.

Compose registered capabilities into dependency graphs with:
- Graph construction from flow definitions and validation
- Concurrency-bounded, dependency-ordered execution
- Failure isolation and cooperative cancellation
"""

from .context import ExecutionContext
from .engine import WorkflowEngine
from .graph import (
    RUN_INPUT,
    FlowDefinition,
    NodeDefinition,
    Reference,
    WorkflowGraph,
    WorkflowNode,
    parse_binding,
)
from .result import NodeResult, RunResult

__all__ = [
    "WorkflowEngine",
    "WorkflowGraph",
    "WorkflowNode",
    "Reference",
    "RUN_INPUT",
    "FlowDefinition",
    "NodeDefinition",
    "parse_binding",
    "ExecutionContext",
    "NodeResult",
    "RunResult",
]
