"""Mutable state of one execution attempt."""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from nodeflow.core.definitions import NodeDefinition
from nodeflow.core.dependency import DependencyGraph
from nodeflow.core.interfaces import InputResolver
from nodeflow.core.models import NodeStatus, PendingInputRequest, WorkflowLink, WorkflowNode


@dataclass
class RunContext:
    """
    Everything one run owns: dependency counters, results, ready queue,
    in-flight markers, pending input requests and the node task handles.

    Owned by the engine; replaced wholesale when a new run starts and
    invalidated on stop. Node tasks hold a reference to the context they were
    launched for and must check `active` (and identity with the engine's
    current context) before writing.
    """

    graph: DependencyGraph
    nodes: dict[str, WorkflowNode]
    links: list[WorkflowLink]
    definitions: dict[str, NodeDefinition]
    input_resolver: InputResolver
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    results: dict[str, Any] = field(default_factory=dict)
    ready: deque[str] = field(default_factory=deque)
    in_flight: set[str] = field(default_factory=set)
    pending_inputs: dict[str, PendingInputRequest] = field(default_factory=dict)
    tasks: set[asyncio.Task] = field(default_factory=set)
    active: bool = True

    def __post_init__(self):
        self._links_by_source: dict[str, list[WorkflowLink]] = {}
        for link in self.links:
            self._links_by_source.setdefault(link.from_node, []).append(link)

    def links_from(self, node_id: str) -> list[WorkflowLink]:
        """All links leaving a node, dangling ones included."""
        return self._links_by_source.get(node_id, [])

    def has_waiting(self) -> bool:
        return any(node.status == NodeStatus.WAITING for node in self.nodes.values())

    def is_idle(self) -> bool:
        return not self.ready and not self.in_flight and not self.has_waiting()

    def invalidate(self) -> None:
        """Discard all bookkeeping. Late completions see active=False."""
        self.active = False
        self.ready.clear()
        self.in_flight.clear()
        self.pending_inputs.clear()
        self.results.clear()
