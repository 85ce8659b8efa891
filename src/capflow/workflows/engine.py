"""
Workflow Engine

Runs a validated WorkflowGraph against a CapabilityRegistry.

Scheduling:
  - Kahn-style: a node becomes READY once every node it references is
    terminal; READY nodes are dispatched as asyncio tasks, bounded by a
    semaphore of ``max_concurrency``.
  - The scheduler sleeps in ``asyncio.wait(FIRST_COMPLETED)`` on running
    tasks and the cancellation signal; each completion re-evaluates the
    finished node's dependents.
  - A dependent of a FAILED/SKIPPED/CANCELLED node is SKIPPED without
    running, transitively. Unrelated branches keep going.
  - Once the token is cancelled no node is promoted to RUNNING; waiting
    nodes become CANCELLED and in-flight executors observe the token.
"""

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Mapping, Optional, Union

from ..core.abstractions import CancellationToken, ILogSink
from ..core.config import EngineSettings
from ..core.errors import ExecutionError, FlowError, InvocationCancelledError
from ..core.logger import LoggingSink, get_logger, level_from_name
from ..core.metrics import MetricsCollector
from ..core.types import NodeStatus
from ..registry import CapabilityRegistry
from .context import ExecutionContext
from .graph import FlowDefinition, WorkflowGraph, WorkflowNode
from .result import NodeResult, RunResult


@dataclass
class _Outcome:
    status: NodeStatus
    outputs: Optional[Dict[str, Any]] = None
    error: Optional[FlowError] = None
    duration_ms: float = 0.0
    input_keys: List[str] = field(default_factory=list)


class WorkflowEngine:
    """
    Executes workflow graphs.

    Usage:
        engine = WorkflowEngine(registry, EngineSettings(max_concurrency=8))
        graph = WorkflowGraph.from_definition(flow).validate(registry)
        result = await engine.run(graph, inputs={"text": "hello"})
        print(result.status_of("tts"), result.first_error)
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        settings: Optional[EngineSettings] = None,
        logger: Optional[ILogSink] = None,
    ):
        """
        Initialize engine.

        Args:
            registry: Registry used to resolve node executors
            settings: Engine settings (defaults to EngineSettings())
            logger: Structured logging sink (defaults to the "capflow"
                logger at settings.log_level)
        """
        self.registry = registry
        self.settings = settings or EngineSettings()
        self.logger = logger or self._default_sink()

    def _default_sink(self) -> LoggingSink:
        level = level_from_name(self.settings.log_level)
        base = get_logger("capflow", level)
        base.setLevel(level)
        return LoggingSink(base)

    @classmethod
    def from_env(cls, registry: CapabilityRegistry, logger: Optional[ILogSink] = None) -> "WorkflowEngine":
        return cls(registry, EngineSettings.from_env(), logger)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        graph: WorkflowGraph,
        inputs: Optional[Mapping[str, Any]] = None,
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> RunResult:
        """
        Execute a validated graph once.

        Args:
            graph: Graph already passed through validate()
            inputs: Initial inputs, readable through ``$input`` references
            token: Cancellation token; a fresh one is created if omitted
            timeout: Seconds before the run cancels itself (defaults to
                settings.run_timeout_s)

        Returns:
            RunResult covering every node

        Raises:
            ValueError: Graph was not validated
        """
        if not graph.is_validated:
            raise ValueError(f"Workflow {graph.name!r} must be validated before it can run")

        run_id = uuid.uuid4().hex[:12]
        ctx = ExecutionContext(graph, inputs, token)
        metrics = MetricsCollector(graph.name)
        metrics.start()

        timeout = timeout if timeout is not None else self.settings.run_timeout_s
        timer = None
        if timeout:
            timer = asyncio.get_running_loop().call_later(timeout, ctx.token.cancel, "timeout")

        self.logger.info("Run started", workflow=graph.name, run_id=run_id, nodes=len(graph))
        try:
            await self._schedule(ctx, metrics)
        finally:
            if timer is not None:
                timer.cancel()
        metrics.stop()

        result = self._build_result(run_id, ctx, metrics)
        summary = result.metrics
        self.logger.info(
            "Run finished",
            workflow=graph.name,
            run_id=run_id,
            status=summary["overall_status"],
            duration_ms=f"{summary['total_duration_ms']:.1f}",
        )
        return result

    async def run_definition(
        self,
        definition: Union[Mapping[str, Any], FlowDefinition],
        inputs: Optional[Mapping[str, Any]] = None,
        token: Optional[CancellationToken] = None,
    ) -> RunResult:
        """Parse, validate and run a flow definition in one call."""
        graph = WorkflowGraph.from_definition(definition).validate(self.registry)
        return await self.run(graph, inputs=inputs, token=token)

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    async def _schedule(self, ctx: ExecutionContext, metrics: MetricsCollector) -> None:
        graph = ctx.graph
        semaphore = asyncio.Semaphore(self.settings.max_concurrency)
        remaining = {nid: len(graph.dependencies(nid)) for nid in graph.node_ids}
        ready: Deque[str] = deque()
        for nid in graph.node_ids:
            if remaining[nid] == 0:
                ctx.transition(nid, NodeStatus.READY)
                ready.append(nid)

        running: Dict[asyncio.Task, str] = {}
        cancel_waiter = asyncio.ensure_future(ctx.token.wait())
        try:
            while True:
                while ready:
                    nid = ready.popleft()
                    if ctx.token.cancelled:
                        self._cancel_node(ctx, nid, metrics)
                        self._settle(ctx, nid, remaining, ready, metrics)
                        continue
                    task = asyncio.create_task(
                        self._run_node(ctx, graph.node(nid), semaphore),
                        name=f"capflow:{graph.name}:{nid}",
                    )
                    running[task] = nid

                if not running:
                    break

                waitables = set(running)
                if not cancel_waiter.done():
                    waitables.add(cancel_waiter)
                done, _ = await asyncio.wait(waitables, return_when=asyncio.FIRST_COMPLETED)

                for task in done:
                    if task is cancel_waiter:
                        self.logger.warning(
                            "Run cancelled", workflow=graph.name, reason=ctx.token.reason
                        )
                        continue
                    nid = running.pop(task)
                    self._complete(ctx, nid, task.result(), metrics)
                    self._settle(ctx, nid, remaining, ready, metrics)
        finally:
            cancel_waiter.cancel()
            for task in running:
                task.cancel()
            if running:
                await asyncio.gather(*running, return_exceptions=True)

    async def _run_node(
        self,
        ctx: ExecutionContext,
        node: WorkflowNode,
        semaphore: asyncio.Semaphore,
    ) -> _Outcome:
        async with semaphore:
            if ctx.token.cancelled:
                return _Outcome(
                    NodeStatus.CANCELLED,
                    error=InvocationCancelledError(node.capability_id, node.id),
                )
            ctx.transition(node.id, NodeStatus.RUNNING)
            self.logger.debug("Node started", node=node.id, capability=node.capability_id)

            start_time = time.time()
            input_keys: List[str] = []
            try:
                inputs = ctx.resolve_inputs(node)
                input_keys = list(inputs)
                executor = self.registry.get_executor(node.capability_id)
                outputs = await executor.execute(ctx.token, dict(node.config), inputs)
            except InvocationCancelledError as e:
                e.node_id = e.node_id or node.id
                return _Outcome(NodeStatus.CANCELLED, error=e, duration_ms=_elapsed(start_time), input_keys=input_keys)
            except FlowError as e:
                if isinstance(e, ExecutionError) and e.node_id is None:
                    e.node_id = node.id
                return _Outcome(NodeStatus.FAILED, error=e, duration_ms=_elapsed(start_time), input_keys=input_keys)
            except Exception as e:
                error = ExecutionError(
                    node.capability_id, str(e) or type(e).__name__, cause=e, node_id=node.id
                )
                error.__cause__ = e
                return _Outcome(NodeStatus.FAILED, error=error, duration_ms=_elapsed(start_time), input_keys=input_keys)

            return _Outcome(
                NodeStatus.SUCCEEDED,
                outputs=outputs,
                duration_ms=_elapsed(start_time),
                input_keys=input_keys,
            )

    # ------------------------------------------------------------------
    # State bookkeeping (scheduler loop only)
    # ------------------------------------------------------------------

    def _complete(
        self,
        ctx: ExecutionContext,
        node_id: str,
        outcome: _Outcome,
        metrics: MetricsCollector,
    ) -> None:
        ctx.durations[node_id] = outcome.duration_ms
        if outcome.status is NodeStatus.SUCCEEDED:
            ctx.record_success(node_id, outcome.outputs or {})
            self.logger.info(
                "Node succeeded", node=node_id, duration_ms=f"{outcome.duration_ms:.1f}"
            )
        else:
            ctx.record_error(node_id, outcome.status, outcome.error)
            level = "warning" if outcome.status is NodeStatus.CANCELLED else "error"
            self.logger.log(level, f"Node {outcome.status.value}", node=node_id, error=str(outcome.error))

        metrics.record_node(
            node_name=node_id,
            duration_ms=outcome.duration_ms,
            status=outcome.status,
            input_keys=outcome.input_keys,
            output_keys=list(outcome.outputs or {}),
            error=str(outcome.error) if outcome.error else None,
        )

    def _cancel_node(self, ctx: ExecutionContext, node_id: str, metrics: MetricsCollector) -> None:
        node = ctx.graph.node(node_id)
        error = InvocationCancelledError(node.capability_id, node_id)
        ctx.record_error(node_id, NodeStatus.CANCELLED, error)
        metrics.record_node(node_id, 0.0, NodeStatus.CANCELLED, error=str(error))

    def _settle(
        self,
        ctx: ExecutionContext,
        finished_id: str,
        remaining: Dict[str, int],
        ready: Deque[str],
        metrics: MetricsCollector,
    ) -> None:
        """Re-evaluate dependents of a node that just reached a terminal state."""
        graph = ctx.graph
        worklist = [finished_id]
        while worklist:
            nid = worklist.pop()
            for dep_id in graph.dependents(nid):
                remaining[dep_id] -= 1
                if remaining[dep_id] > 0:
                    continue

                if ctx.token.cancelled:
                    self._cancel_node(ctx, dep_id, metrics)
                    worklist.append(dep_id)
                    continue

                blocked = [
                    d for d in graph.dependencies(dep_id)
                    if ctx.status(d) is not NodeStatus.SUCCEEDED
                ]
                if blocked:
                    reason = ", ".join(f"{d} {ctx.status(d).value}" for d in blocked)
                    ctx.record_skip(dep_id, f"upstream not succeeded: {reason}")
                    metrics.record_node(dep_id, 0.0, NodeStatus.SKIPPED)
                    self.logger.info("Node skipped", node=dep_id, upstream=reason)
                    worklist.append(dep_id)
                else:
                    ctx.transition(dep_id, NodeStatus.READY)
                    ready.append(dep_id)

    def _build_result(
        self,
        run_id: str,
        ctx: ExecutionContext,
        metrics: MetricsCollector,
    ) -> RunResult:
        nodes = {}
        for node in ctx.graph.nodes:
            status = ctx.status(node.id)
            outputs = dict(ctx.outputs_of(node.id)) if ctx.has_outputs(node.id) else None
            nodes[node.id] = NodeResult(
                node_id=node.id,
                capability_id=node.capability_id,
                status=status,
                outputs=outputs,
                error=ctx.errors.get(node.id),
                reason=ctx.reasons.get(node.id),
                duration_ms=ctx.durations.get(node.id, 0.0),
            )
        return RunResult(
            run_id=run_id,
            workflow_name=ctx.graph.name,
            nodes=nodes,
            first_error=ctx.first_error,
            cancelled=ctx.token.cancelled,
            metrics=metrics.get_workflow_metrics(),
        )

    def __repr__(self) -> str:
        return f"WorkflowEngine(max_concurrency={self.settings.max_concurrency})"


def _elapsed(start_time: float) -> float:
    return (time.time() - start_time) * 1000
