"""Boundary contracts between the engine and its collaborators."""

from __future__ import annotations

from typing import Any, Protocol

from nodeflow.core.definitions import NodeDefinition
from nodeflow.core.graph_schema import GraphLink, GraphNode
from nodeflow.core.models import ExecutionPayload, InputRequest, InputResponse


class GraphSnapshotReader(Protocol):
    """Static node and link lists of the workflow (read once per run)."""

    def get_nodes(self) -> list[GraphNode]: ...

    def get_links(self) -> list[GraphLink]: ...


class NodeDefinitionResolver(Protocol):
    """Input-port schema and default properties of a node type."""

    def resolve(self, definition_ref: str | None) -> NodeDefinition | None: ...


class NodeExecutor(Protocol):
    """Opaque computation behind a node. May take arbitrarily long and may raise."""

    async def execute(self, executor_ref: str, payload: ExecutionPayload) -> Any: ...


class InputResolver(Protocol):
    """UI-backed source of user-supplied input values.

    request() raises InputAbandoned when the form is dismissed, superseded by a
    newer request for the same node, or cancelled.
    """

    async def request(self, request: InputRequest) -> InputResponse: ...

    def cancel(self, node_id: str | None = None) -> None: ...
