"""Workflow graph schema definitions using Pydantic models.

A workflow is the static graph drawn in the editor: nodes referencing a node
definition and an executor, and links from an output slot of one node to an
input slot of another. The engine only reads it (see WorkflowGraph.get_nodes
and get_links); the editing helpers below mirror what the canvas does.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable

import networkx as nx
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from nodeflow.core.definitions import DefinitionRegistry
from nodeflow.core.errors import GraphLoadError

logger = logging.getLogger(__name__)


class GraphNode(BaseModel):
    """Node placed on the canvas"""

    id: str
    definition_ref: str | None = None  # Node definition id
    executor_ref: str | None = None  # Falls back to the definition's executor
    title: str | None = None
    properties: dict[str, Any] = Field(default_factory=dict)  # Per-instance overrides
    position: tuple[float, float] = (0.0, 0.0)

    @field_validator("id")
    @classmethod
    def validate_node_id(cls, v):
        if not v or not v.strip():
            raise ValueError("Node ID cannot be empty")
        return v


class GraphLink(BaseModel):
    """Directed link from an output slot to an input slot"""

    from_node: str
    from_slot: int = 0
    to_node: str
    to_slot: int = 0

    @field_validator("from_slot", "to_slot")
    @classmethod
    def validate_slot(cls, v):
        if v < 0:
            raise ValueError(f"Slot index must be >= 0, got {v}")
        return v

    @property
    def link_id(self) -> str:
        return f"{self.from_node}:{self.from_slot}->{self.to_node}:{self.to_slot}"

    def same_endpoints(self, other: GraphLink) -> bool:
        return (
            self.from_node == other.from_node
            and self.from_slot == other.from_slot
            and self.to_node == other.to_node
            and self.to_slot == other.to_slot
        )


class WorkflowGraph(BaseModel):
    """Complete workflow graph as drawn in the editor"""

    id: str = "workflow"
    name: str = "Untitled workflow"
    description: str | None = None

    nodes: list[GraphNode] = Field(default_factory=list)
    links: list[GraphLink] = Field(default_factory=list)

    # ========== Snapshot reader ==========

    def get_nodes(self) -> list[GraphNode]:
        return [node.model_copy(deep=True) for node in self.nodes]

    def get_links(self) -> list[GraphLink]:
        return [link.model_copy() for link in self.links]

    def get_node(self, node_id: str) -> GraphNode | None:
        return next((n for n in self.nodes if n.id == node_id), None)

    # ========== Editing ==========

    def add_node(self, node: GraphNode) -> GraphNode:
        if self.get_node(node.id) is not None:
            raise ValueError(f"Duplicate node ID: '{node.id}'")
        self.nodes.append(node)
        return node

    def remove_node(self, node_id: str) -> bool:
        """Remove a node together with every link attached to it."""
        before = len(self.nodes)
        self.nodes = [n for n in self.nodes if n.id != node_id]
        self.links = [
            link for link in self.links if link.from_node != node_id and link.to_node != node_id
        ]
        return len(self.nodes) != before

    def connect(self, link: GraphLink) -> GraphLink | None:
        """Add a link, replacing any link already attached to the same input slot.

        An input slot accepts a single link. Exact duplicates are ignored.

        Returns:
            The detached link, if one was replaced.
        """
        if any(existing.same_endpoints(link) for existing in self.links):
            return None

        replaced = next(
            (
                existing
                for existing in self.links
                if existing.to_node == link.to_node and existing.to_slot == link.to_slot
            ),
            None,
        )
        if replaced is not None:
            self.links = [existing for existing in self.links if existing is not replaced]
            logger.info(f"Link {replaced.link_id} detached by {link.link_id}")

        self.links.append(link)
        return replaced

    def disconnect(self, link: GraphLink) -> bool:
        before = len(self.links)
        self.links = [existing for existing in self.links if not existing.same_endpoints(link)]
        return len(self.links) != before

    # ========== Validation ==========

    def validate_graph(
        self,
        definitions: DefinitionRegistry | None = None,
        executor_refs: Iterable[str] | None = None,
    ) -> list[str]:
        """
        Validate graph structure.

        Structural checks always run; definition and executor checks only when
        a registry / the set of known executor refs is given.
        Returns list of validation errors.
        """
        errors = []

        seen_node_ids = set()
        for node in self.nodes:
            if node.id in seen_node_ids:
                errors.append(f"Duplicate node ID: '{node.id}'")
            seen_node_ids.add(node.id)
        node_ids = seen_node_ids

        seen_links = set()
        slot_owners: dict[tuple[str, int], str] = {}
        for link in self.links:
            if link.link_id in seen_links:
                errors.append(f"Duplicate link: {link.link_id}")
                continue
            seen_links.add(link.link_id)

            if link.from_node not in node_ids:
                errors.append(f"Link {link.link_id}: source '{link.from_node}' not found")
            if link.to_node not in node_ids:
                errors.append(f"Link {link.link_id}: target '{link.to_node}' not found")

            slot = (link.to_node, link.to_slot)
            if slot in slot_owners:
                errors.append(
                    f"Input slot {link.to_slot} of '{link.to_node}' has multiple links: "
                    f"{slot_owners[slot]}, {link.link_id}"
                )
            else:
                slot_owners[slot] = link.link_id

        # Limit cycle enumeration to prevent DoS on complex graphs
        MAX_CYCLES_TO_REPORT = 20
        G = self._to_networkx()
        for cycle_count, cycle in enumerate(nx.simple_cycles(G), start=1):
            if cycle_count > MAX_CYCLES_TO_REPORT:
                errors.append(f"Too many cycles to report (>{MAX_CYCLES_TO_REPORT})")
                break
            errors.append(f"Cycle detected: {' -> '.join(cycle + cycle[:1])}")

        if definitions is not None:
            errors.extend(self._validate_against_definitions(definitions, node_ids))

        if executor_refs is not None:
            known = set(executor_refs)
            for node in self.nodes:
                ref = node.executor_ref
                if ref is None and definitions is not None:
                    definition = definitions.resolve(node.definition_ref)
                    ref = definition.executor_ref if definition else None
                if ref is None:
                    errors.append(f"Node '{node.id}': no executor configured")
                elif ref not in known:
                    errors.append(f"Node '{node.id}': unknown executor '{ref}'")

        return errors

    def _validate_against_definitions(
        self, definitions: DefinitionRegistry, node_ids: set[str]
    ) -> list[str]:
        errors = []
        node_map = {n.id: n for n in self.nodes}
        for node in self.nodes:
            if node.definition_ref is not None and node.definition_ref not in definitions:
                errors.append(f"Node '{node.id}': unknown definition '{node.definition_ref}'")

        for link in self.links:
            if link.from_node not in node_ids or link.to_node not in node_ids:
                continue  # Reported above
            source = definitions.resolve(node_map[link.from_node].definition_ref)
            target = definitions.resolve(node_map[link.to_node].definition_ref)
            output = None
            if source is not None and source.outputs:
                if link.from_slot >= len(source.outputs):
                    errors.append(
                        f"Link {link.link_id}: '{link.from_node}' has no output slot {link.from_slot}"
                    )
                else:
                    output = source.outputs[link.from_slot]
            if target is not None:
                if link.to_slot >= len(target.inputs):
                    errors.append(
                        f"Link {link.link_id}: '{link.to_node}' has no input slot {link.to_slot}"
                    )
                elif output is not None and output.type != target.inputs[link.to_slot].type:
                    errors.append(
                        f"Link {link.link_id}: type mismatch "
                        f"({output.type.value} -> {target.inputs[link.to_slot].type.value})"
                    )
        return errors

    def _to_networkx(self) -> nx.DiGraph:
        """Convert to NetworkX DiGraph for analysis (dangling links dropped)"""
        G = nx.DiGraph()
        for node in self.nodes:
            G.add_node(node.id)
        for link in self.links:
            if link.from_node in G and link.to_node in G:
                G.add_edge(link.from_node, link.to_node)
        return G

    def analyze_parallelism(self) -> list[list[str]]:
        """Find nodes that can execute in parallel (topological levels)"""
        G = self._to_networkx()
        try:
            return [list(level) for level in nx.topological_generations(G)]
        except nx.NetworkXUnfeasible:
            return []  # Has cycles

    # ========== Persistence ==========

    @classmethod
    def from_yaml(cls, path: Path) -> WorkflowGraph:
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise GraphLoadError(f"Cannot read workflow from {path}: {e}") from e
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise GraphLoadError(f"{path}: invalid workflow: {e}") from e

    def to_yaml(self, path: Path) -> None:
        data = self.model_dump(mode="json", exclude_none=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=False)
