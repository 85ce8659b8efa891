"""
Game of Telephone - 5 Hops as a capflow Workflow

A message passes through 5 chat hops. Each hop is a template node that
builds the prompt followed by a chat node, wired together through input
bindings. Runs against a local Ollama model.

Usage:
    pip install 'capflow[ollama]'
    OLLAMA_MODEL=qwen3:8b python examples/telephone_game.py
"""

import asyncio
import os

from capflow import (
    RUN_INPUT,
    CapabilityRegistry,
    ChatProviderFactory,
    EngineSettings,
    NodeStatus,
    TemplateFactory,
    WorkflowEngine,
    WorkflowGraph,
)

HOPS = 5

PROMPT = (
    "You are playing a game of telephone. "
    "The previous person said: {message}\n\n"
    "Repeat what they said exactly, but add ONE brief word or phrase (2-3 words max) at the end. "
    "Keep the core message completely intact. Reply with the message only."
)


def ref(source: str, key: str) -> dict:
    return {"sourceNodeId": source, "outputKey": key}


def build_flow() -> dict:
    """Chain template -> chat pairs; hop 1 reads the run input."""
    nodes = []
    source = ref(RUN_INPUT, "message")
    for i in range(1, HOPS + 1):
        nodes.append({
            "id": f"prompt_{i}",
            "capabilityId": "telephone_prompt",
            "inputBindings": {"message": source},
        })
        nodes.append({
            "id": f"hop_{i}",
            "capabilityId": "local_chat",
            "inputBindings": {"prompt": ref(f"prompt_{i}", "text")},
        })
        source = ref(f"hop_{i}", "content")
    return {"name": "telephone_game", "nodes": nodes}


async def run_telephone_game(initial_message: str = "The quick brown fox jumps over the lazy dog"):
    print("=" * 60)
    print(f"GAME OF TELEPHONE - {HOPS} HOPS")
    print("=" * 60)
    print(f"\nInitial message: {initial_message}\n")

    model_name = os.getenv("OLLAMA_MODEL", "qwen3:8b")
    registry = CapabilityRegistry()
    registry.register("telephone_prompt", TemplateFactory(), {"template": PROMPT})
    registry.register("local_chat", ChatProviderFactory("ollama"), {
        "backend": "ollama",
        "model": model_name,
        "temperature": 0.7,
        "max_tokens": 256,
    })

    graph = WorkflowGraph.from_definition(build_flow()).validate(registry)
    print("Workflow structure:")
    print(graph.visualize())
    print()

    engine = WorkflowEngine(registry, EngineSettings.from_env())
    try:
        result = await engine.run(graph, inputs={"message": initial_message})
    finally:
        await registry.aclose()

    print("-" * 60)
    print("MESSAGE PROGRESSION:")
    print("-" * 60)
    for i in range(1, HOPS + 1):
        node = result.nodes[f"hop_{i}"]
        if node.status is NodeStatus.SUCCEEDED:
            print(f"Hop {i}: {node.outputs['content'].strip()}")
        else:
            print(f"Hop {i}: <{node.status.value}> {node.error or node.reason}")

    print("\nMetrics:")
    print(f"  Status: {result.metrics['overall_status']}")
    print(f"  Duration: {result.metrics['total_duration_ms']:.0f}ms")
    return result


if __name__ == "__main__":
    asyncio.run(run_telephone_game())
