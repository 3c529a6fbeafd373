# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the nodeflow test suite.

This module provides:
- A small node definition library (sources, steps, joins, user-input nodes)
- A controllable executor whose calls can be held open and made to fail
- Helpers to build graphs and to wait for asynchronous conditions

Node executor refs default to the node id, so executor calls identify nodes.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml

from nodeflow.core.definitions import DefinitionRegistry, InputPort, NodeDefinition, OutputPort
from nodeflow.core.engine import WorkflowEngine
from nodeflow.core.graph_schema import GraphLink, GraphNode, WorkflowGraph
from nodeflow.core.interaction import InputBridge
from nodeflow.core.models import ExecutionPayload


# =============================================================================
# Definitions and Graphs
# =============================================================================


def make_registry() -> DefinitionRegistry:
    return DefinitionRegistry(
        [
            NodeDefinition(id="source", title="Source", outputs=[OutputPort(name="out")]),
            NodeDefinition(
                id="step",
                title="Step",
                inputs=[InputPort(name="value", required=True)],
                outputs=[OutputPort(name="out")],
            ),
            NodeDefinition(
                id="join",
                title="Join",
                inputs=[
                    InputPort(name="left", required=True),
                    InputPort(name="right", required=True),
                ],
                outputs=[OutputPort(name="out")],
            ),
            NodeDefinition(
                id="ask",
                title="Ask",
                inputs=[InputPort(name="topic", type="prompt", required=True)],
                outputs=[OutputPort(name="out")],
            ),
            NodeDefinition(
                id="parse",
                title="Parse",
                inputs=[InputPort(name="payload", type="object", required=True)],
                outputs=[OutputPort(name="out", type="object")],
            ),
            NodeDefinition(
                id="styled",
                title="Styled",
                inputs=[InputPort(name="value", required=True)],
                outputs=[OutputPort(name="out")],
                properties=[{"name": "tone", "default": "neutral"}, {"name": "length", "default": 3}],
            ),
        ]
    )


def build_graph(
    nodes: list[tuple[str, str]],
    links: list[tuple[str, str, int]] = (),
    **node_overrides: dict[str, Any],
) -> WorkflowGraph:
    """Build a graph from (node_id, definition_ref) pairs and (from, to, to_slot) triples."""
    return WorkflowGraph(
        id="test",
        name="Test workflow",
        nodes=[
            GraphNode(id=node_id, definition_ref=ref, executor_ref=node_id, **node_overrides.get(node_id, {}))
            for node_id, ref in nodes
        ],
        links=[GraphLink(from_node=src, to_node=dst, to_slot=slot) for src, dst, slot in links],
    )


@pytest.fixture
def registry() -> DefinitionRegistry:
    return make_registry()


@pytest.fixture
def linear_graph() -> WorkflowGraph:
    """a -> b -> c"""
    return build_graph(
        [("a", "source"), ("b", "step"), ("c", "step")],
        [("a", "b", 0), ("b", "c", 0)],
    )


@pytest.fixture
def diamond_graph() -> WorkflowGraph:
    """a -> b, a -> c, b -> d (left), c -> d (right)"""
    return build_graph(
        [("a", "source"), ("b", "step"), ("c", "step"), ("d", "join")],
        [("a", "b", 0), ("a", "c", 0), ("b", "d", 0), ("c", "d", 1)],
    )


@pytest.fixture
def definitions_file(tmp_path: Path) -> Path:
    path = tmp_path / "definitions.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "definitions": [
                    {"id": "source", "executor_ref": "echo", "outputs": [{"name": "out", "type": "object"}]},
                    {
                        "id": "enhancer",
                        "executor_ref": "enhance_prompt",
                        "inputs": [{"name": "source", "type": "object", "required": True}],
                        "outputs": [{"name": "prompt"}],
                    },
                    {
                        "id": "ask",
                        "executor_ref": "echo",
                        "inputs": [{"name": "topic", "type": "prompt", "required": True}],
                        "outputs": [{"name": "out", "type": "object"}],
                    },
                ]
            }
        )
    )
    return path


@pytest.fixture
def workflow_file(tmp_path: Path) -> Path:
    """seed (source) -> enhance (enhancer)"""
    path = tmp_path / "workflow.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "id": "wf",
                "name": "Seed and enhance",
                "nodes": [
                    {"id": "seed", "definition_ref": "source"},
                    {"id": "enhance", "definition_ref": "enhancer"},
                ],
                "links": [{"from_node": "seed", "to_node": "enhance", "to_slot": 0}],
            }
        )
    )
    return path


# =============================================================================
# Executor
# =============================================================================


class ControlledExecutor:
    """Executor double keyed by executor ref.

    - hold(ref): calls for ref block until release(ref)
    - fail(ref, exc): calls for ref raise exc
    - Results are "out:<ref>"
    """

    def __init__(self):
        self.calls: list[str] = []
        self.payloads: dict[str, ExecutionPayload] = {}
        self.active = 0
        self.max_active = 0
        self._gates: dict[str, asyncio.Event] = {}
        self._failures: dict[str, Exception] = {}

    def hold(self, *refs: str) -> None:
        for ref in refs:
            self._gates[ref] = asyncio.Event()

    def release(self, *refs: str) -> None:
        for ref in refs:
            self._gates[ref].set()

    def fail(self, ref: str, exc: Exception) -> None:
        self._failures[ref] = exc

    def started(self, ref: str) -> bool:
        return ref in self.calls

    async def execute(self, executor_ref: str, payload: ExecutionPayload) -> Any:
        self.calls.append(executor_ref)
        self.payloads[executor_ref] = payload
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            gate = self._gates.get(executor_ref)
            if gate is not None:
                await gate.wait()
            if executor_ref in self._failures:
                raise self._failures[executor_ref]
            return f"out:{executor_ref}"
        finally:
            self.active -= 1


@pytest.fixture
def executor() -> ControlledExecutor:
    return ControlledExecutor()


@pytest.fixture
def bridge() -> InputBridge:
    return InputBridge()


@pytest.fixture
def make_engine(registry, executor, bridge) -> Callable[[WorkflowGraph], WorkflowEngine]:
    def factory(graph: WorkflowGraph) -> WorkflowEngine:
        return WorkflowEngine(graph, registry, executor, input_resolver=bridge)

    return factory


# =============================================================================
# Async helpers
# =============================================================================


async def wait_until(predicate: Callable[[], bool], attempts: int = 200) -> None:
    """Yield to the event loop until predicate() holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")
