"""Terminal rendering of workflow structure and run status.

SECURITY: node titles, outputs and error messages are user-controlled and
escaped before they reach Rich markup.
"""

from typing import Any

import networkx as nx
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from nodeflow.core.graph_schema import WorkflowGraph
from nodeflow.core.models import NodeStatus, PendingInputRequest, StatusSnapshot

STATUS_STYLES = {
    NodeStatus.PENDING: ("○", "dim"),
    NodeStatus.WAITING: ("?", "yellow"),
    NodeStatus.PROGRESSING: ("⟳", "blue bold"),
    NodeStatus.PAUSED: ("‖", "magenta"),
    NodeStatus.DONE: ("✓", "green"),
    NodeStatus.ERROR: ("✗", "red bold"),
}


def _truncate(text: str, limit: int = 40) -> str:
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def format_status(status: NodeStatus) -> str:
    symbol, style = STATUS_STYLES.get(status, ("○", "white"))
    return f"[{style}]{symbol} {status.value.capitalize()}[/]"


class TerminalGraphRenderer:
    """
    Renders a workflow graph as topological levels.

    Nodes on the same line have no dependency on each other and run
    concurrently. Edges themselves are not drawn.
    """

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def render_graph(
        self,
        workflow: WorkflowGraph,
        statuses: dict[str, NodeStatus] | None = None,
    ) -> str:
        node_map = {node.id: node for node in workflow.nodes}
        G = workflow._to_networkx()
        try:
            levels = [list(level) for level in nx.topological_generations(G)]
        except nx.NetworkXUnfeasible:
            # Has cycles - use simple layout
            levels = [list(node_map)]

        lines = []
        for level_idx, level in enumerate(levels):
            level_nodes = []
            for node_id in level:
                node = node_map.get(node_id)
                if not node:
                    continue
                safe_label = escape(node.title or node_id)
                status = statuses.get(node_id) if statuses else None
                if status is not None and status != NodeStatus.PENDING:
                    symbol, style = STATUS_STYLES[status]
                    level_nodes.append(f"[{style}]{symbol} {safe_label}[/]")
                else:
                    level_nodes.append(f"[cyan][ ] {safe_label}[/]")

            lines.append("  |  ".join(level_nodes))
            if level_idx < len(levels) - 1:
                lines.append("  " + "  v  " * len(level_nodes))

        return "\n".join(lines)


class StatusTableRenderer:
    """Renders a StatusSnapshot as Rich tables."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def render_status_table(self, snapshot: StatusSnapshot) -> Table:
        run_label = escape(snapshot.run_id or "-")
        table = Table(title=f"Run {run_label}: {snapshot.run_status.value}")

        table.add_column("Node", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Output / Error", max_width=48)

        for view in snapshot.nodes:
            safe_label = escape(view.title or view.node_id)
            detail = ""
            if view.error:
                detail = f"[red]{escape(_truncate(view.error, 48))}[/]"
            elif view.output_value is not None:
                detail = escape(_truncate(self._format_output(view.output_value), 48))
            elif view.blocked_by:
                blocked = ", ".join(escape(node_id) for node_id in view.blocked_by)
                detail = f"[dim]blocked by {blocked}[/]"
            table.add_row(safe_label, format_status(view.status), detail)

        return table

    def render_pending_inputs(self, requests: list[PendingInputRequest]) -> Table:
        table = Table(title="Pending inputs")
        table.add_column("Node", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Missing fields")

        for request in requests:
            table.add_row(
                escape(request.node_name),
                request.status.value,
                escape(", ".join(request.missing)) or "[dim]-[/]",
            )
        return table

    @staticmethod
    def _format_output(value: Any) -> str:
        if isinstance(value, str):
            return value
        return repr(value)
