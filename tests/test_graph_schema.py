"""Tests for the workflow graph model: editing, validation and YAML loading."""

from pathlib import Path

import pytest
import yaml

from conftest import build_graph, make_registry
from nodeflow.core.errors import GraphLoadError
from nodeflow.core.graph_schema import GraphLink, GraphNode, WorkflowGraph


class TestEditing:
    """connect / disconnect / add / remove."""

    def test_connect_replaces_link_on_same_input_slot(self):
        graph = build_graph([("a", "source"), ("b", "source"), ("c", "step")], [("a", "c", 0)])

        replaced = graph.connect(GraphLink(from_node="b", to_node="c", to_slot=0))

        assert replaced is not None and replaced.from_node == "a"
        assert [(l.from_node, l.to_node) for l in graph.links] == [("b", "c")]

    def test_connect_ignores_exact_duplicate(self):
        graph = build_graph([("a", "source"), ("b", "step")], [("a", "b", 0)])

        assert graph.connect(GraphLink(from_node="a", to_node="b", to_slot=0)) is None
        assert len(graph.links) == 1

    def test_connect_other_slot_keeps_existing(self):
        graph = build_graph([("a", "source"), ("b", "source"), ("j", "join")], [("a", "j", 0)])

        assert graph.connect(GraphLink(from_node="b", to_node="j", to_slot=1)) is None
        assert len(graph.links) == 2

    def test_remove_node_drops_attached_links(self):
        graph = build_graph(
            [("a", "source"), ("b", "step"), ("c", "step")], [("a", "b", 0), ("b", "c", 0)]
        )

        assert graph.remove_node("b") is True
        assert graph.links == []
        assert graph.remove_node("b") is False

    def test_add_duplicate_node_rejected(self):
        graph = build_graph([("a", "source")])
        with pytest.raises(ValueError, match="Duplicate"):
            graph.add_node(GraphNode(id="a"))

    def test_disconnect(self):
        graph = build_graph([("a", "source"), ("b", "step")], [("a", "b", 0)])
        assert graph.disconnect(GraphLink(from_node="a", to_node="b")) is True
        assert graph.links == []

    def test_snapshot_reader_returns_copies(self):
        graph = build_graph([("a", "source")])
        nodes = graph.get_nodes()
        nodes[0].title = "changed"
        assert graph.nodes[0].title is None

    def test_negative_slot_rejected(self):
        with pytest.raises(ValueError):
            GraphLink(from_node="a", to_node="b", to_slot=-1)


class TestValidateGraph:
    """Structural, definition and executor checks."""

    def test_valid_graph(self, diamond_graph):
        assert diamond_graph.validate_graph(definitions=make_registry()) == []

    def test_dangling_link(self):
        graph = build_graph([("a", "source")], [("a", "ghost", 0)])
        errors = graph.validate_graph()
        assert any("'ghost' not found" in e for e in errors)

    def test_cycle_detected(self):
        graph = build_graph([("a", "step"), ("b", "step")], [("a", "b", 0), ("b", "a", 0)])
        assert any("Cycle detected" in e for e in graph.validate_graph())

    def test_multiple_links_per_slot(self):
        graph = WorkflowGraph(
            nodes=[GraphNode(id="a"), GraphNode(id="b"), GraphNode(id="c")],
            links=[GraphLink(from_node="a", to_node="c"), GraphLink(from_node="b", to_node="c")],
        )
        assert any("multiple links" in e for e in graph.validate_graph())

    def test_duplicate_node_ids(self):
        graph = WorkflowGraph(nodes=[GraphNode(id="a"), GraphNode(id="a")])
        assert "Duplicate node ID: 'a'" in graph.validate_graph()

    def test_unknown_definition_and_slot(self):
        graph = build_graph([("a", "source"), ("b", "mystery"), ("c", "step")], [("a", "c", 3)])
        errors = graph.validate_graph(definitions=make_registry())

        assert "Node 'b': unknown definition 'mystery'" in errors
        assert any("has no input slot 3" in e for e in errors)

    def test_type_mismatch(self):
        graph = build_graph([("a", "source"), ("p", "parse")], [("a", "p", 0)])
        errors = graph.validate_graph(definitions=make_registry())
        assert any("type mismatch (string -> object)" in e for e in errors)

    def test_executor_refs_checked(self):
        graph = WorkflowGraph(
            nodes=[GraphNode(id="a", executor_ref="echo"), GraphNode(id="b", executor_ref="nope"), GraphNode(id="c")]
        )
        errors = graph.validate_graph(executor_refs=["echo"])

        assert errors == ["Node 'b': unknown executor 'nope'", "Node 'c': no executor configured"]

    def test_analyze_parallelism(self, diamond_graph):
        levels = diamond_graph.analyze_parallelism()
        assert [sorted(level) for level in levels] == [["a"], ["b", "c"], ["d"]]


class TestYaml:
    """Loading and saving workflow documents."""

    def test_round_trip(self, tmp_path: Path, diamond_graph):
        path = tmp_path / "wf.yaml"
        diamond_graph.to_yaml(path)

        loaded = WorkflowGraph.from_yaml(path)
        assert [n.id for n in loaded.nodes] == ["a", "b", "c", "d"]
        assert [l.link_id for l in loaded.links] == [l.link_id for l in diamond_graph.links]

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "bad.yaml"
        path.write_text("nodes: [unclosed")
        with pytest.raises(GraphLoadError):
            WorkflowGraph.from_yaml(path)

    def test_invalid_schema(self, tmp_path: Path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"nodes": [{"id": ""}]}))
        with pytest.raises(GraphLoadError, match="invalid workflow"):
            WorkflowGraph.from_yaml(path)

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(GraphLoadError):
            WorkflowGraph.from_yaml(tmp_path / "missing.yaml")

    def test_bundled_examples_are_valid(self):
        from nodeflow.core.definitions import DefinitionRegistry
        from nodeflow.core.executors import default_registry

        root = Path(__file__).resolve().parent.parent / "examples"
        registry = DefinitionRegistry.from_yaml(root / "definitions.yaml")
        for path in sorted((root / "workflows").glob("*.yaml")):
            graph = WorkflowGraph.from_yaml(path)
            assert graph.validate_graph(registry, default_registry().names()) == [], path.name
