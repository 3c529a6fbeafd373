"""Run-time data models for the workflow engine.

Uses Pydantic for the per-run node/link state, the input resolver channel
messages and the status projection read model.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from nodeflow.core.definitions import InputPort
from nodeflow.core.graph_schema import GraphLink


class NodeStatus(str, Enum):
    """Execution status of a node (and, mirrored, of its outgoing links)"""

    PENDING = "pending"  # Not started (dependencies not met, or queued)
    WAITING = "waiting"  # Blocked on user-supplied input values
    PROGRESSING = "progressing"  # Executor call in flight
    PAUSED = "paused"  # In flight while the run is paused
    DONE = "done"  # Output recorded
    ERROR = "error"  # Validation or execution failed


class RunStatus(str, Enum):
    """Global status of the workflow run"""

    STOPPED = "stopped"
    PROGRESSING = "progressing"
    PAUSED = "paused"


class PendingInputStatus(str, Enum):
    """Status of a pending input request"""

    PENDING = "pending"  # Request handed to the input resolver
    WAITING = "waiting"  # Published, nobody is filling it in
    DONE = "done"  # Values submitted


class WorkflowNode(BaseModel):
    """Per-run state of one graph node"""

    id: str
    definition_ref: str | None = None
    executor_ref: str = ""
    title: str | None = None
    status: NodeStatus = NodeStatus.PENDING
    input_values: dict[str, Any] = Field(default_factory=dict)  # Resolved, validated values
    form_values: dict[str, Any] = Field(default_factory=dict)  # User-submitted form data
    property_values: dict[str, Any] = Field(default_factory=dict)
    output_value: Any = None
    error: str | None = None
    completed_at: datetime | None = None

    @property
    def display_name(self) -> str:
        return self.title or self.id

    @property
    def has_output(self) -> bool:
        return self.completed_at is not None

    def record_output(self, value: Any) -> None:
        """Store the node result. A node produces at most one output per run."""
        if self.has_output:
            raise ValueError(f"Node '{self.id}' already has an output for this run")
        self.output_value = value
        self.completed_at = datetime.now(timezone.utc)

    def reset(self) -> WorkflowNode:
        """Fresh pending copy with inputs and outputs cleared."""
        return self.model_copy(
            update={
                "status": NodeStatus.PENDING,
                "input_values": {},
                "form_values": {},
                "output_value": None,
                "error": None,
                "completed_at": None,
            },
            deep=True,
        )


class WorkflowLink(GraphLink):
    """Per-run link state. Status always mirrors the source node."""

    status: NodeStatus = NodeStatus.PENDING

    def reset(self) -> WorkflowLink:
        return self.model_copy(update={"status": NodeStatus.PENDING})


class PendingInputRequest(BaseModel):
    """Node waiting for user-supplied values"""

    node_id: str
    node_name: str
    form: list[InputPort] = Field(default_factory=list)  # Input form schema
    status: PendingInputStatus = PendingInputStatus.WAITING
    prefill: dict[str, Any] = Field(default_factory=dict)  # Last known form values
    missing: list[str] = Field(default_factory=list)  # Required fields without a value


class InputRequest(BaseModel):
    """Message sent to the input resolver"""

    node_id: str
    node_name: str
    form: list[InputPort] = Field(default_factory=list)  # Input form schema
    prefill: dict[str, Any] = Field(default_factory=dict)


class InputResponse(BaseModel):
    """Values submitted for a node's input form"""

    node_id: str
    values: dict[str, Any] = Field(default_factory=dict)


class ExecutionPayload(BaseModel):
    """Payload handed to an external executor"""

    input_values: dict[str, Any] = Field(default_factory=dict)
    property_values: dict[str, Any] = Field(default_factory=dict)


# --- Status projection read model ---


class NodeStatusView(BaseModel):
    """Externally observable node status"""

    node_id: str
    title: str | None = None
    status: NodeStatus
    output_value: Any = None  # Only set when status is DONE
    error: str | None = None
    blocked_by: list[str] = Field(default_factory=list)  # Failed ancestors


class LinkStatusView(BaseModel):
    """Externally observable link status"""

    link_id: str
    from_node: str
    to_node: str
    status: NodeStatus


class StatusSnapshot(BaseModel):
    """Point-in-time status of the whole workflow run"""

    version: int = 0
    run_status: RunStatus = RunStatus.STOPPED
    run_id: str | None = None
    nodes: list[NodeStatusView] = Field(default_factory=list)
    links: list[LinkStatusView] = Field(default_factory=list)
    pending_inputs: list[PendingInputRequest] = Field(default_factory=list)

    def node(self, node_id: str) -> NodeStatusView | None:
        return next((n for n in self.nodes if n.node_id == node_id), None)

    def link(self, link_id: str) -> LinkStatusView | None:
        return next((link for link in self.links if link.link_id == link_id), None)
