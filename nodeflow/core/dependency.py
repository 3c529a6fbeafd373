"""Dependency graph derived from the workflow links at run start."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from nodeflow.core.graph_schema import GraphLink

logger = logging.getLogger(__name__)


@dataclass
class DependencyGraph:
    """Adjacency and unmet-dependency counters for one run.

    A node is eligible to run iff remaining_deps[node] == 0. satisfy() is the
    only mutation and acts at most once per source node, so every target
    reaches zero exactly once.
    """

    node_order: list[str]
    incoming: dict[str, list[GraphLink]]
    outgoing: dict[str, list[GraphLink]]
    remaining_deps: dict[str, int]
    initial_deps: dict[str, int]
    _satisfied: set[str] = field(default_factory=set)

    def roots(self) -> list[str]:
        """Nodes with no incoming edges, in graph order."""
        return [node_id for node_id in self.node_order if self.initial_deps[node_id] == 0]

    def is_ready(self, node_id: str) -> bool:
        return self.remaining_deps.get(node_id, 0) == 0

    def satisfy(self, node_id: str) -> list[str]:
        """Mark every outgoing edge of a completed node as satisfied.

        Returns:
            Downstream nodes whose counter just reached zero.
        """
        if node_id in self._satisfied:
            logger.warning(f"Dependencies of node {node_id} already satisfied; ignoring")
            return []
        self._satisfied.add(node_id)

        ready = []
        for link in self.outgoing.get(node_id, []):
            current = self.remaining_deps[link.to_node]
            if current == 0:
                continue
            self.remaining_deps[link.to_node] = current - 1
            if current - 1 == 0:
                ready.append(link.to_node)
        return ready


def build_dependency_graph(node_ids: Iterable[str], links: Sequence[GraphLink]) -> DependencyGraph:
    """
    Derive incoming/outgoing adjacency and dependency counters.

    Pure derivation. Links whose endpoints reference unknown nodes are ignored.
    """
    order = list(dict.fromkeys(node_ids))
    incoming: dict[str, list[GraphLink]] = {node_id: [] for node_id in order}
    outgoing: dict[str, list[GraphLink]] = {node_id: [] for node_id in order}

    for link in links:
        if link.from_node not in incoming or link.to_node not in incoming:
            logger.warning(f"Ignoring dangling link {link.link_id}")
            continue
        incoming[link.to_node].append(link)
        outgoing[link.from_node].append(link)

    counts = {node_id: len(incoming[node_id]) for node_id in order}
    return DependencyGraph(
        node_order=order,
        incoming=incoming,
        outgoing=outgoing,
        remaining_deps=dict(counts),
        initial_deps=counts,
    )
