"""Status projection consumed by renderers.

The projection is recomputed from the engine's authoritative node and link
collections on every call; nothing here is stored.
"""

from __future__ import annotations

from typing import Iterable, Sequence

import networkx as nx

from nodeflow.core.models import (
    LinkStatusView,
    NodeStatus,
    NodeStatusView,
    PendingInputRequest,
    RunStatus,
    StatusSnapshot,
    WorkflowLink,
    WorkflowNode,
)


def blocked_by_failures(
    nodes: Sequence[WorkflowNode], links: Sequence[WorkflowLink]
) -> dict[str, list[str]]:
    """Map each not-yet-started node to the failed ancestors holding it back.

    Status of such nodes stays PENDING; this only tells a renderer that they
    will not become ready during the current run.
    """
    failed = [node.id for node in nodes if node.status == NodeStatus.ERROR]
    if not failed:
        return {}

    G = nx.DiGraph()
    G.add_nodes_from(node.id for node in nodes)
    G.add_edges_from(
        (link.from_node, link.to_node) for link in links if link.from_node in G and link.to_node in G
    )

    blocked: dict[str, set[str]] = {}
    for failed_id in failed:
        for descendant in nx.descendants(G, failed_id):
            blocked.setdefault(descendant, set()).add(failed_id)

    pending_ids = {node.id for node in nodes if node.status == NodeStatus.PENDING}
    return {node_id: sorted(sources) for node_id, sources in blocked.items() if node_id in pending_ids}


def project_status(
    run_status: RunStatus,
    nodes: Iterable[WorkflowNode],
    links: Iterable[WorkflowLink],
    pending_inputs: Iterable[PendingInputRequest] = (),
    version: int = 0,
    run_id: str | None = None,
) -> StatusSnapshot:
    """Build a read-only snapshot of node, link and pending-input status."""
    node_list = list(nodes)
    link_list = list(links)
    blocked = blocked_by_failures(node_list, link_list)

    return StatusSnapshot(
        version=version,
        run_status=run_status,
        run_id=run_id,
        nodes=[
            NodeStatusView(
                node_id=node.id,
                title=node.title,
                status=node.status,
                output_value=node.output_value if node.status == NodeStatus.DONE else None,
                error=node.error,
                blocked_by=blocked.get(node.id, []),
            )
            for node in node_list
        ],
        links=[
            LinkStatusView(
                link_id=link.link_id,
                from_node=link.from_node,
                to_node=link.to_node,
                status=link.status,
            )
            for link in link_list
        ],
        pending_inputs=[request.model_copy(deep=True) for request in pending_inputs],
    )
