"""Tests for WorkflowEngine scheduling, failure isolation and cancellation."""

import asyncio
import logging

import pytest

from capflow.core.abstractions import CancellationToken, NullSink
from capflow.core.config import EngineSettings
from capflow.core.errors import (
    ExecutionError,
    GraphError,
    InvocationCancelledError,
    NotFoundError,
)
from capflow.core.types import NodeStatus
from capflow.providers import TemplateFactory
from capflow.providers.template import TemplateOutput
from capflow.workflows import RUN_INPUT, WorkflowEngine, WorkflowGraph

from conftest import FnFactory, recorder


def ref(source, key="text"):
    return {"sourceNodeId": source, "outputKey": key}


def node(node_id, capability=None, config=None, **bindings):
    return {
        "id": node_id,
        "capabilityId": capability or node_id,
        "config": config or {},
        "inputBindings": bindings,
    }


def build(registry, *nodes, name="test-flow"):
    return WorkflowGraph.from_definition({"name": name, "nodes": list(nodes)}).validate(registry)


@pytest.fixture
def engine(registry):
    return WorkflowEngine(registry, EngineSettings(max_concurrency=4), logger=NullSink())


# ============================================================================
# Ordering and data flow
# ============================================================================

class TestOrdering:
    """Tests for dependency ordering and data flow."""

    @pytest.mark.asyncio
    async def test_linear_chain(self, registry, register_fn, engine, journal):
        """Test A -> B -> C runs in order and passes outputs along."""
        for name in "ABC":
            register_fn(name, recorder(journal, name))
        graph = build(
            registry,
            node("A", text="seed"),
            node("B", text=ref("A")),
            node("C", text=ref("B")),
        )

        result = await engine.run(graph)

        assert result.succeeded
        assert journal == ["start:A", "end:A", "start:B", "end:B", "start:C", "end:C"]
        assert result.nodes["C"].outputs == {"text": "C(B(A(seed)))"}
        assert result.first_error is None
        assert not result.cancelled

    @pytest.mark.asyncio
    async def test_sibling_runs_concurrently(self, registry, register_fn, engine, journal):
        """Test D, which does not depend on A, overlaps with B.

        B and D each wait for the other to start, so the run only finishes
        if they are in flight at the same time.
        """
        b_started, d_started = asyncio.Event(), asyncio.Event()

        async def b(token, config, inputs):
            b_started.set()
            await d_started.wait()
            return {"text": "b"}

        async def d(token, config, inputs):
            d_started.set()
            await b_started.wait()
            return {"text": "d"}

        register_fn("A", recorder(journal, "A", delay=0.01))
        register_fn("B", b)
        register_fn("C", recorder(journal, "C"))
        register_fn("D", d)
        graph = build(
            registry,
            node("A"), node("B", x=ref("A")), node("C", x=ref("B")), node("D"),
        )

        result = await asyncio.wait_for(engine.run(graph), timeout=5)

        assert result.succeeded
        assert journal.index("end:A") < journal.index("start:C")

    @pytest.mark.asyncio
    async def test_node_never_starts_before_dependencies(self, registry, register_fn, engine, journal):
        """Test a join node waits for every upstream node."""
        register_fn("fast", recorder(journal, "fast"))
        register_fn("slow", recorder(journal, "slow", delay=0.05))
        register_fn("join", recorder(journal, "join"))
        graph = build(
            registry,
            node("fast"), node("slow"),
            node("join", a=ref("fast"), b=ref("slow")),
        )

        await engine.run(graph)

        assert journal[-2:] == ["start:join", "end:join"]
        assert journal.index("end:slow") < journal.index("start:join")

    @pytest.mark.asyncio
    async def test_run_inputs(self, registry, engine):
        """Test $input references read the run's initial inputs."""
        registry.register("greet", TemplateFactory(), {"template": "Hello {name}, you said {said}"})
        graph = build(registry, node(
            "greet", name=ref(RUN_INPUT, "user"), said=ref(RUN_INPUT, "message"),
        ))

        result = await engine.run(graph, inputs={"user": "Ada", "message": "hi"})

        assert result.outputs == {"greet": {"text": "Hello Ada, you said hi"}}

    @pytest.mark.asyncio
    async def test_node_config_overrides(self, registry, engine):
        """Test per-node config overrides apply to that node only."""
        registry.register("render", TemplateFactory(), {"template": "default {x}"})
        graph = build(
            registry,
            node("plain", "render", x="1"),
            node("custom", "render", config={"template": "custom {x}"}, x="2"),
        )

        result = await engine.run(graph)

        assert result.nodes["plain"].outputs == {"text": "default 1"}
        assert result.nodes["custom"].outputs == {"text": "custom 2"}

    @pytest.mark.asyncio
    async def test_reruns_are_independent(self, registry, register_fn, engine, journal):
        """Test the same graph can run repeatedly with identical results."""
        register_fn("A", recorder(journal, "A"))
        register_fn("B", recorder(journal, "B"))
        graph = build(registry, node("A", text=ref(RUN_INPUT)), node("B", text=ref("A")))

        first = await engine.run(graph, inputs={"text": "x"})
        second = await engine.run(graph, inputs={"text": "x"})

        assert first.outputs == second.outputs == {
            "A": {"text": "A(x)"}, "B": {"text": "B(A(x))"},
        }
        assert first.run_id != second.run_id

    @pytest.mark.asyncio
    async def test_outputs_isolated_between_nodes(self, registry, register_fn, engine):
        """Test a consumer mutating its input cannot change the producer's outputs."""

        async def produce(token, config, inputs):
            return {"items": ["a"]}

        async def mutate(token, config, inputs):
            inputs["items"].append("b")
            return {"items": inputs["items"]}

        register_fn("P", produce)
        register_fn("M", mutate)
        register_fn("N", mutate)
        graph = build(registry, node("P"), node("M", items=ref("P", "items")), node("N", items=ref("P", "items")))

        result = await engine.run(graph)

        assert result.nodes["P"].outputs == {"items": ["a"]}
        assert result.nodes["M"].outputs == {"items": ["a", "b"]}
        assert result.nodes["N"].outputs == {"items": ["a", "b"]}

    @pytest.mark.asyncio
    async def test_max_concurrency(self, registry, register_fn):
        """Test no more than max_concurrency nodes run at once."""
        active = 0
        peak = 0

        async def work(token, config, inputs):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return {}

        for i in range(6):
            register_fn(f"n{i}", work)
        graph = build(registry, *(node(f"n{i}") for i in range(6)))
        engine = WorkflowEngine(registry, EngineSettings(max_concurrency=2), logger=NullSink())

        result = await engine.run(graph)

        assert result.succeeded
        assert peak == 2

    @pytest.mark.asyncio
    async def test_empty_graph(self, registry, engine):
        result = await engine.run(build(registry))
        assert result.nodes == {}
        assert result.succeeded

    @pytest.mark.asyncio
    async def test_unvalidated_graph_rejected(self, registry, register_fn, engine):
        register_fn("A", recorder([], "A"))
        graph = WorkflowGraph.from_definition({"nodes": [node("A")]})
        with pytest.raises(ValueError):
            await engine.run(graph)

    @pytest.mark.asyncio
    async def test_run_definition(self, registry, register_fn, engine, journal):
        register_fn("A", recorder(journal, "A"))
        result = await engine.run_definition(
            {"name": "adhoc", "nodes": [node("A", text=ref(RUN_INPUT))]},
            inputs={"text": "go"},
        )
        assert result.workflow_name == "adhoc"
        assert result.outputs["A"] == {"text": "A(go)"}

    @pytest.mark.asyncio
    async def test_run_definition_invalid(self, registry, engine):
        with pytest.raises(GraphError):
            await engine.run_definition({"nodes": [node("A")]})


# ============================================================================
# Failure isolation
# ============================================================================

class TestFailureIsolation:
    """Tests for per-node failure handling."""

    @pytest.mark.asyncio
    async def test_failure_skips_dependents_only(self, registry, register_fn, engine, journal):
        """Test B failing skips C while the independent D still succeeds."""
        register_fn("A", recorder(journal, "A"))
        register_fn("B", recorder(journal, "B", fail=True))
        register_fn("C", recorder(journal, "C"))
        register_fn("D", recorder(journal, "D", delay=0.02))
        graph = build(
            registry,
            node("A"), node("B", x=ref("A")), node("C", x=ref("B")), node("D"),
        )

        result = await engine.run(graph)

        assert result.status_of("A") is NodeStatus.SUCCEEDED
        assert result.status_of("B") is NodeStatus.FAILED
        assert result.status_of("C") is NodeStatus.SKIPPED
        assert result.status_of("D") is NodeStatus.SUCCEEDED
        assert "start:C" not in journal
        assert not result.succeeded

        error = result.nodes["B"].error
        assert isinstance(error, ExecutionError)
        assert error.node_id == "B"
        assert "B exploded" in str(error)
        assert result.first_error is error
        assert result.nodes["C"].reason == "upstream not succeeded: B failed"
        assert result.nodes["C"].error is None

    @pytest.mark.asyncio
    async def test_skip_is_transitive(self, registry, register_fn, engine, journal):
        """Test nodes downstream of a skipped node are skipped too."""
        register_fn("A", recorder(journal, "A", fail=True))
        for name in "BCE":
            register_fn(name, recorder(journal, name))
        graph = build(
            registry,
            node("A"), node("B", x=ref("A")), node("C", x=ref("B")), node("E", x=ref("C")),
        )

        result = await engine.run(graph)

        assert [result.status_of(n) for n in "BCE"] == [NodeStatus.SKIPPED] * 3
        assert result.nodes["E"].reason == "upstream not succeeded: C skipped"
        assert journal == ["start:A"]
        assert result.metrics["overall_status"] == "failed"

    @pytest.mark.asyncio
    async def test_join_with_one_failed_parent(self, registry, register_fn, engine, journal):
        register_fn("ok", recorder(journal, "ok"))
        register_fn("bad", recorder(journal, "bad", fail=True))
        register_fn("join", recorder(journal, "join"))
        graph = build(registry, node("ok"), node("bad"), node("join", a=ref("ok"), b=ref("bad")))

        result = await engine.run(graph)

        assert result.status_of("join") is NodeStatus.SKIPPED
        assert result.status_of("ok") is NodeStatus.SUCCEEDED
        assert result.metrics["overall_status"] == "partial"

    @pytest.mark.asyncio
    async def test_missing_output_key_fails_node(self, registry, register_fn, engine, journal):
        """Test referencing an absent output key fails the consumer."""
        register_fn("A", recorder(journal, "A"))
        register_fn("B", recorder(journal, "B"))
        graph = build(registry, node("A"), node("B", x=ref("A", "nonexistent")))

        result = await engine.run(graph)

        assert result.status_of("B") is NodeStatus.FAILED
        assert "nonexistent" in str(result.nodes["B"].error)
        assert "start:B" not in journal

    @pytest.mark.asyncio
    async def test_missing_run_input_fails_node(self, registry, register_fn, engine):
        register_fn("A", recorder([], "A"))
        graph = build(registry, node("A", text=ref(RUN_INPUT, "absent")))
        result = await engine.run(graph, inputs={})
        assert result.status_of("A") is NodeStatus.FAILED
        assert "run inputs" in str(result.first_error)

    @pytest.mark.asyncio
    async def test_capability_removed_after_validation(self, registry, register_fn, engine):
        """Test a capability unregistered between validation and run fails its node."""
        register_fn("A", recorder([], "A"))
        graph = build(registry, node("A"))
        await registry.unregister("A")

        result = await engine.run(graph)

        assert result.status_of("A") is NodeStatus.FAILED
        assert isinstance(result.nodes["A"].error, NotFoundError)

    @pytest.mark.asyncio
    async def test_result_serializes(self, registry, register_fn, engine):
        register_fn("A", recorder([], "A", fail=True))
        result = await engine.run(build(registry, node("A")))
        data = result.to_dict()
        assert data["succeeded"] is False
        assert data["nodes"]["A"]["status"] == "failed"
        assert data["nodes"]["A"]["error_type"] == "ExecutionError"

    @pytest.mark.asyncio
    async def test_undeclared_outputs_fail_node(self, registry, engine, journal):
        """Test a node whose outputs miss a declared field fails and skips dependents."""

        class TextFactory(FnFactory):
            output_model = TemplateOutput

        async def wrong_shape(token, config, inputs):
            return {"unexpected": 1}

        registry.register("A", TextFactory(wrong_shape, provider_name="A"))
        registry.register("B", FnFactory(recorder(journal, "B"), provider_name="B"))
        graph = build(registry, node("A"), node("B", x=ref("A")))

        result = await engine.run(graph)

        assert result.status_of("A") is NodeStatus.FAILED
        assert isinstance(result.nodes["A"].error, ExecutionError)
        assert result.status_of("B") is NodeStatus.SKIPPED
        assert journal == []


# ============================================================================
# Cancellation
# ============================================================================

class TestCancellation:
    """Tests for cooperative run cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_mid_run(self, registry, register_fn, engine, journal):
        """Test cancelling while A runs cancels A and never starts B."""
        started = asyncio.Event()

        async def slow(token, config, inputs):
            started.set()
            await asyncio.sleep(30)
            return {"text": "late"}

        register_fn("A", slow)
        register_fn("B", recorder(journal, "B"))
        graph = build(registry, node("A"), node("B", x=ref("A")))
        token = CancellationToken()

        run = asyncio.create_task(engine.run(graph, token=token))
        await started.wait()
        token.cancel("user")
        result = await asyncio.wait_for(run, timeout=2)

        assert result.cancelled
        assert result.status_of("A") is NodeStatus.CANCELLED
        assert result.status_of("B") is NodeStatus.CANCELLED
        assert isinstance(result.nodes["B"].error, InvocationCancelledError)
        assert journal == []
        assert result.metrics["overall_status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_completed_nodes_keep_results(self, registry, register_fn, engine, journal):
        """Test nodes finished before cancellation stay succeeded."""
        started = asyncio.Event()

        async def slow(token, config, inputs):
            started.set()
            await asyncio.sleep(30)
            return {}

        register_fn("A", recorder(journal, "A"))
        register_fn("B", slow)
        graph = build(registry, node("A"), node("B", x=ref("A")))
        token = CancellationToken()

        run = asyncio.create_task(engine.run(graph, token=token))
        await started.wait()
        token.cancel()
        result = await asyncio.wait_for(run, timeout=2)

        assert result.status_of("A") is NodeStatus.SUCCEEDED
        assert result.nodes["A"].outputs == {"text": "A()"}
        assert result.status_of("B") is NodeStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_pre_cancelled_token(self, registry, register_fn, engine, journal):
        register_fn("A", recorder(journal, "A"))
        register_fn("B", recorder(journal, "B"))
        graph = build(registry, node("A"), node("B", x=ref("A")))
        token = CancellationToken()
        token.cancel()

        result = await engine.run(graph, token=token)

        assert journal == []
        assert all(r.status is NodeStatus.CANCELLED for r in result.nodes.values())
        assert isinstance(result.first_error, InvocationCancelledError)

    @pytest.mark.asyncio
    async def test_queued_nodes_not_started(self, registry, register_fn, journal):
        """Test nodes waiting for a worker slot are cancelled, not started."""
        started = asyncio.Event()

        async def slow(token, config, inputs):
            started.set()
            await asyncio.sleep(30)
            return {}

        register_fn("busy", slow)
        register_fn("queued", recorder(journal, "queued"))
        graph = build(registry, node("busy"), node("queued"))
        engine = WorkflowEngine(registry, EngineSettings(max_concurrency=1), logger=NullSink())
        token = CancellationToken()

        run = asyncio.create_task(engine.run(graph, token=token))
        await started.wait()
        token.cancel()
        result = await asyncio.wait_for(run, timeout=2)

        assert result.status_of("queued") is NodeStatus.CANCELLED
        assert journal == []

    @pytest.mark.asyncio
    async def test_run_timeout(self, registry, register_fn, engine, journal):
        """Test a run exceeding its timeout is cancelled."""

        async def slow(token, config, inputs):
            await asyncio.sleep(30)
            return {}

        register_fn("A", slow)
        register_fn("B", recorder(journal, "B"))
        graph = build(registry, node("A"), node("B", x=ref("A")))
        token = CancellationToken()

        result = await asyncio.wait_for(engine.run(graph, token=token, timeout=0.05), timeout=2)

        assert result.cancelled
        assert token.reason == "timeout"
        assert result.status_of("A") is NodeStatus.CANCELLED
        assert result.status_of("B") is NodeStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_settings_timeout(self, registry, register_fn):
        async def slow(token, config, inputs):
            await asyncio.sleep(30)
            return {}

        register_fn("A", slow)
        engine = WorkflowEngine(
            registry, EngineSettings(run_timeout_s=0.05), logger=NullSink()
        )
        result = await asyncio.wait_for(engine.run(build(registry, node("A"))), timeout=2)
        assert result.status_of("A") is NodeStatus.CANCELLED


# ============================================================================
# Logging
# ============================================================================

class TestEngineLogging:
    """Tests for the engine's default logging sink."""

    @pytest.fixture
    def capflow_logger(self):
        base = logging.getLogger("capflow")
        previous = base.level
        yield base
        base.setLevel(previous)

    def test_log_level_from_env(self, registry, monkeypatch, capflow_logger):
        """Test CAPFLOW_LOG_LEVEL sets the level of the default sink."""
        monkeypatch.delenv("CAPFLOW_MAX_CONCURRENCY", raising=False)
        monkeypatch.delenv("CAPFLOW_RUN_TIMEOUT", raising=False)
        monkeypatch.setenv("CAPFLOW_LOG_LEVEL", "debug")

        engine = WorkflowEngine.from_env(registry)

        assert engine.logger.logger is capflow_logger
        assert capflow_logger.isEnabledFor(logging.DEBUG)

    def test_log_level_from_settings(self, registry, capflow_logger):
        WorkflowEngine(registry, EngineSettings(log_level="error"))
        assert not capflow_logger.isEnabledFor(logging.WARNING)
        assert capflow_logger.isEnabledFor(logging.ERROR)

    def test_explicit_sink_kept(self, registry):
        sink = NullSink()
        assert WorkflowEngine(registry, logger=sink).logger is sink
