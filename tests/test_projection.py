"""Tests for the status projection."""

from nodeflow.core.models import (
    NodeStatus,
    PendingInputRequest,
    RunStatus,
    WorkflowLink,
    WorkflowNode,
)
from nodeflow.core.projection import blocked_by_failures, project_status


def node(node_id: str, status: NodeStatus = NodeStatus.PENDING, **kwargs) -> WorkflowNode:
    return WorkflowNode(id=node_id, status=status, **kwargs)


def link(src: str, dst: str, status: NodeStatus = NodeStatus.PENDING) -> WorkflowLink:
    return WorkflowLink(from_node=src, to_node=dst, status=status)


class TestBlockedByFailures:
    def test_no_failures(self):
        assert blocked_by_failures([node("a"), node("b")], [link("a", "b")]) == {}

    def test_descendants_of_failed_node(self):
        nodes = [node("a", NodeStatus.ERROR), node("b"), node("c"), node("x", NodeStatus.ERROR), node("z")]
        links = [link("a", "b"), link("b", "c"), link("x", "c")]

        assert blocked_by_failures(nodes, links) == {"b": ["a"], "c": ["a", "x"]}

    def test_only_pending_nodes_are_reported(self):
        nodes = [node("a", NodeStatus.ERROR), node("b", NodeStatus.DONE)]
        assert blocked_by_failures(nodes, [link("a", "b")]) == {}


class TestProjectStatus:
    def test_snapshot_contents(self):
        nodes = [
            node("a", NodeStatus.DONE, title="Alpha", output_value="hello"),
            node("b", NodeStatus.ERROR, error="boom"),
            node("c"),
        ]
        links = [link("a", "b", NodeStatus.DONE), link("b", "c", NodeStatus.ERROR)]
        pending = [PendingInputRequest(node_id="c", node_name="c")]

        snapshot = project_status(RunStatus.PAUSED, nodes, links, pending, version=7, run_id="r1")

        assert snapshot.version == 7
        assert snapshot.run_status == RunStatus.PAUSED
        assert snapshot.node("a").title == "Alpha"
        assert snapshot.node("a").output_value == "hello"
        assert snapshot.node("b").error == "boom"
        assert snapshot.node("c").blocked_by == ["b"]
        assert snapshot.link("a:0->b:0").status == NodeStatus.DONE
        assert [p.node_id for p in snapshot.pending_inputs] == ["c"]

    def test_output_hidden_unless_done(self):
        snapshot = project_status(
            RunStatus.PROGRESSING, [node("a", NodeStatus.PROGRESSING, output_value="partial")], []
        )
        assert snapshot.node("a").output_value is None

    def test_pending_inputs_are_copied(self):
        request = PendingInputRequest(node_id="c", node_name="c")
        snapshot = project_status(RunStatus.PROGRESSING, [node("c", NodeStatus.WAITING)], [], [request])

        snapshot.pending_inputs[0].prefill["x"] = 1
        assert request.prefill == {}
