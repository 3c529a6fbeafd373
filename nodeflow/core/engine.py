"""Workflow execution engine.

Turns a static node/link graph into a live, partially ordered execution:
- Nodes run as soon as every upstream node is DONE; independent branches run
  concurrently as asyncio tasks on one event loop (no locks needed)
- Nodes with required inputs that nothing upstream supplies wait for user
  input without holding up the rest of the graph
- run/pause/stop/retry_input are the only mutating entry points
- Failures stay local to the node: it goes to ERROR, the run pauses, and its
  descendants simply never become ready
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from nodeflow.core.definitions import InputPort, NodeDefinition
from nodeflow.core.dependency import build_dependency_graph
from nodeflow.core.errors import EngineError, EngineStateError, ExecutionError, InputAbandoned, ValidationError
from nodeflow.core.interaction import InputBridge
from nodeflow.core.interfaces import (
    GraphSnapshotReader,
    InputResolver,
    NodeDefinitionResolver,
    NodeExecutor,
)
from nodeflow.core.models import (
    ExecutionPayload,
    InputRequest,
    NodeStatus,
    PendingInputRequest,
    PendingInputStatus,
    RunStatus,
    StatusSnapshot,
    WorkflowLink,
    WorkflowNode,
)
from nodeflow.core.projection import project_status
from nodeflow.core.run_context import RunContext
from nodeflow.core.validation import validate_inputs

logger = logging.getLogger(__name__)

StatusListener = Callable[[StatusSnapshot], None]


class WorkflowEngine:
    """
    Dependency-driven scheduler with a run/pause/stop/retry-input control surface.

    Key Features:
    - Exactly one RunContext is active; starting a run replaces the previous one
    - Results arriving for an invalidated context are discarded
    - Every state transition publishes a fresh StatusSnapshot to listeners

    USAGE:
        engine = WorkflowEngine(graph, registry, default_registry())
        await engine.run()
        await engine.join()
    """

    def __init__(
        self,
        graph: GraphSnapshotReader,
        definitions: NodeDefinitionResolver,
        executor: NodeExecutor,
        input_resolver: InputResolver | None = None,
    ):
        self.graph = graph
        self.definitions = definitions
        self.executor = executor
        self.input_resolver = input_resolver if input_resolver is not None else InputBridge()
        self._status = RunStatus.STOPPED
        self._context: RunContext | None = None
        self._nodes: dict[str, WorkflowNode] = {}
        self._links: list[WorkflowLink] = []
        self._listeners: list[StatusListener] = []
        self._version = 0
        self._open_requests: dict[str, InputRequest] = {}

    # ========== Public Accessors ==========

    @property
    def status(self) -> RunStatus:
        return self._status

    @property
    def context(self) -> RunContext | None:
        return self._context

    @property
    def nodes(self) -> dict[str, WorkflowNode]:
        return self._nodes

    @property
    def links(self) -> list[WorkflowLink]:
        return self._links

    def get_node(self, node_id: str) -> WorkflowNode | None:
        return self._nodes.get(node_id)

    def waiting_nodes(self) -> list[str]:
        return [node_id for node_id, node in self._nodes.items() if node.status == NodeStatus.WAITING]

    def pending_inputs(self) -> list[PendingInputRequest]:
        if self._context is None:
            return []
        return list(self._context.pending_inputs.values())

    def snapshot(self) -> StatusSnapshot:
        return project_status(
            self._status,
            self._nodes.values(),
            self._links,
            self.pending_inputs(),
            version=self._version,
            run_id=self._context.run_id if self._context else None,
        )

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener for status snapshots. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def load_graph(self, graph: GraphSnapshotReader) -> None:
        """Replace the graph snapshot source. Only allowed while stopped."""
        if self._status != RunStatus.STOPPED:
            raise EngineStateError(f"Cannot replace the graph while the run is {self._status.value}")
        self.graph = graph

    async def join(self) -> None:
        """Wait until no node task of the current run is in flight."""
        while True:
            ctx = self._context
            if ctx is None:
                return
            tasks = [task for task in ctx.tasks if not task.done()]
            if not tasks:
                return
            await asyncio.wait(tasks)

    # ========== Control Surface ==========

    async def run(self) -> None:
        """
        Start a fresh run, or resume a paused one.

        No-op while already progressing.
        """
        if self._status == RunStatus.PROGRESSING:
            return
        if self._status == RunStatus.PAUSED and self._is_current(self._context):
            self._resume(self._context)
            return
        self._start()

    def pause(self) -> bool:
        """Stop launching new node tasks. In-flight tasks run to completion."""
        if self._status != RunStatus.PROGRESSING:
            return False
        self._enter_paused()
        logger.info(f"Run {self._context.run_id if self._context else '-'} paused")
        self._publish()
        return True

    def stop(self) -> None:
        """
        Invalidate the current run and reset every node and link to PENDING.

        Outstanding input requests are abandoned; executor calls already in
        flight are not interrupted, their results are discarded when they land.
        """
        ctx = self._context
        if ctx is not None:
            ctx.invalidate()
            logger.info(f"Run {ctx.run_id} stopped")
        self._context = None
        self.input_resolver.cancel()
        self._open_requests.clear()

        self._nodes = {node_id: node.reset() for node_id, node in self._nodes.items()}
        self._links = [link.reset() for link in self._links]
        self._status = RunStatus.STOPPED
        self._publish()

    async def retry_input(self, node_id: str) -> bool:
        """
        Ask the input resolver for a WAITING node's values and re-queue it.

        Returns:
            True if values were received and the node was re-queued
        """
        ctx = self._context
        if not self._is_current(ctx):
            logger.warning(f"retry_input({node_id}): no active run")
            return False
        node = ctx.nodes.get(node_id)
        if node is None or node.status != NodeStatus.WAITING:
            logger.warning(f"retry_input({node_id}): node is not waiting for input")
            return False
        definition = ctx.definitions[node_id]
        if not definition.inputs:
            return False

        pending = ctx.pending_inputs.get(node_id)
        if pending is None:
            pending = self._pending_request(node, definition, [])
            ctx.pending_inputs[node_id] = pending
        pending.status = PendingInputStatus.PENDING
        self._publish()

        request = InputRequest(
            node_id=node_id,
            node_name=node.display_name,
            form=list(definition.inputs),
            prefill=dict(node.form_values),
        )
        self._open_requests[node_id] = request
        try:
            response = await ctx.input_resolver.request(request)
        except InputAbandoned as e:
            logger.info(f"Input for node {node_id} abandoned: {e}")
            if self._release_request(node_id, request) and self._is_current(ctx):
                if node.status == NodeStatus.WAITING:
                    pending.status = PendingInputStatus.WAITING
                    self._publish()
            return False
        latest = self._release_request(node_id, request)

        if not self._is_current(ctx):
            logger.info(f"Discarding input for node {node_id} from invalidated run {ctx.run_id}")
            return False
        if response.node_id != node_id or node.status != NodeStatus.WAITING:
            logger.warning(f"Ignoring input response for node {response.node_id} (requested {node_id})")
            if latest and node.status == NodeStatus.WAITING:
                pending.status = PendingInputStatus.WAITING
                self._publish()
            return False

        node.form_values = dict(response.values)
        pending.status = PendingInputStatus.DONE
        pending.prefill = dict(response.values)
        ctx.ready.append(node_id)
        logger.info(f"Node {node_id} received input, re-queued")

        if self._status != RunStatus.PROGRESSING:
            self._resume(ctx)
        else:
            self._publish()
            self._drain(ctx)
            self._finalize_if_idle(ctx)
        return True

    # ========== Run Lifecycle ==========

    def _start(self) -> None:
        graph_nodes = self.graph.get_nodes()
        graph_links = self.graph.get_links()

        definitions: dict[str, NodeDefinition] = {}
        nodes: dict[str, WorkflowNode] = {}
        for graph_node in graph_nodes:
            definition = self.definitions.resolve(graph_node.definition_ref)
            if definition is None:
                logger.warning(
                    f"Node {graph_node.id}: unknown definition '{graph_node.definition_ref}', "
                    "running without inputs"
                )
                definition = NodeDefinition(id=graph_node.definition_ref or graph_node.id)
            definitions[graph_node.id] = definition
            nodes[graph_node.id] = WorkflowNode(
                id=graph_node.id,
                definition_ref=graph_node.definition_ref,
                executor_ref=graph_node.executor_ref or definition.executor_ref or "",
                title=graph_node.title or definition.title,
                property_values=definition.merge_properties(graph_node.properties),
            )
        links = [WorkflowLink(**link.model_dump()) for link in graph_links]

        ctx = RunContext(
            graph=build_dependency_graph(nodes, links),
            nodes=nodes,
            links=links,
            definitions=definitions,
            input_resolver=self.input_resolver,
        )
        ctx.ready.extend(ctx.graph.roots())

        if self._context is not None:
            self._context.invalidate()
            self.input_resolver.cancel()
        self._open_requests.clear()
        self._context = ctx
        self._nodes = nodes
        self._links = links
        self._status = RunStatus.PROGRESSING
        logger.info(f"Run {ctx.run_id} started with {len(nodes)} nodes, {len(ctx.ready)} ready")
        self._publish()

        self._drain(ctx)
        self._finalize_if_idle(ctx)

    def _resume(self, ctx: RunContext) -> None:
        self._status = RunStatus.PROGRESSING
        for node in ctx.nodes.values():
            if node.status == NodeStatus.PAUSED:
                self._set_node_status(ctx, node, NodeStatus.PROGRESSING)
        logger.info(f"Run {ctx.run_id} resumed")
        self._publish()
        self._drain(ctx)
        self._finalize_if_idle(ctx)

    def _enter_paused(self) -> None:
        self._status = RunStatus.PAUSED
        ctx = self._context
        if ctx is None:
            return
        for node in ctx.nodes.values():
            if node.status == NodeStatus.PROGRESSING:
                self._set_node_status(ctx, node, NodeStatus.PAUSED)

    def _finalize_if_idle(self, ctx: RunContext) -> None:
        """Finish the run once nothing is queued, in flight or waiting for input."""
        if not self._is_current(ctx) or self._status != RunStatus.PROGRESSING:
            return
        if not ctx.is_idle():
            return
        self._status = RunStatus.STOPPED
        done = sum(1 for node in ctx.nodes.values() if node.status == NodeStatus.DONE)
        logger.info(f"Run {ctx.run_id} finished: {done}/{len(ctx.nodes)} nodes done")
        self._publish()

    # ========== Scheduler Loop ==========

    def _drain(self, ctx: RunContext) -> None:
        """Launch a node task for every ready node while the run is progressing."""
        while ctx.ready and self._is_current(ctx) and self._status == RunStatus.PROGRESSING:
            node_id = ctx.ready.popleft()
            if node_id in ctx.in_flight:
                continue
            ctx.in_flight.add(node_id)
            task = asyncio.create_task(self._run_node(ctx, node_id), name=f"node:{node_id}")
            ctx.tasks.add(task)
            task.add_done_callback(self._on_task_done(ctx))

    @staticmethod
    def _on_task_done(ctx: RunContext) -> Callable[[asyncio.Task], None]:
        def callback(task: asyncio.Task) -> None:
            ctx.tasks.discard(task)
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                logger.error(f"Task {task.get_name()} crashed: {exc!r}", exc_info=exc)

        return callback

    # ========== Node Task ==========

    async def _run_node(self, ctx: RunContext, node_id: str) -> None:
        """
        Life cycle of one node:
        1. Resolve inputs from upstream results and form data
        2. Park as WAITING if a required input has no source
        3. Validate, then invoke the executor
        4. Record the output and release downstream nodes, or fail locally
        """
        node = ctx.nodes[node_id]
        definition = ctx.definitions[node_id]
        try:
            # Launched before a stop() but not started until after it
            if not self._is_current(ctx):
                logger.debug(f"Skipping node {node_id} of invalidated run {ctx.run_id}")
                return
            if node.status == NodeStatus.DONE:
                logger.warning(f"Node {node_id} already done; not re-executing")
                return

            resolved, missing = self._resolve_inputs(ctx, node, definition)
            if missing:
                self._await_input(ctx, node, definition, missing)
                return

            try:
                input_values = validate_inputs(definition.inputs, resolved)
            except ValidationError as e:
                # Only nodes fed by upstream edges hold the run up
                self._fail_node(ctx, node, e, pause=bool(ctx.graph.incoming.get(node_id)))
                return

            node.input_values = input_values
            self._set_node_status(ctx, node, self._in_flight_status())
            self._publish()

            payload = ExecutionPayload(
                input_values=input_values,
                property_values=dict(node.property_values),
            )
            if not self._is_current(ctx):
                return
            try:
                output = await self.executor.execute(node.executor_ref, payload)
            except Exception as e:
                if not self._is_current(ctx):
                    logger.info(f"Ignoring failure of node {node_id} from invalidated run {ctx.run_id}")
                    return
                self._fail_node(ctx, node, ExecutionError(node_id, e), pause=True)
                return

            if not self._is_current(ctx):
                logger.info(f"Discarding result of node {node_id} from invalidated run {ctx.run_id}")
                return
            self._complete_node(ctx, node, output)
        finally:
            ctx.in_flight.discard(node_id)
            if self._is_current(ctx):
                self._drain(ctx)
                self._finalize_if_idle(ctx)

    def _resolve_inputs(
        self, ctx: RunContext, node: WorkflowNode, definition: NodeDefinition
    ) -> tuple[dict[str, Any], list[InputPort]]:
        """
        Resolve a value for every input port.

        Slot i maps to definition.inputs[i]. A linked slot takes the source
        node's stored result; an unlinked one takes the node's form data.

        Returns:
            (resolved values, required ports with no value source)
        """
        links_by_slot = {link.to_slot: link for link in ctx.graph.incoming.get(node.id, [])}
        values: dict[str, Any] = {}
        missing: list[InputPort] = []
        for index, port in enumerate(definition.inputs):
            link = links_by_slot.get(index)
            if link is not None:
                values[port.name] = ctx.results.get(link.from_node)
            elif port.name in node.form_values:
                values[port.name] = node.form_values[port.name]
            elif port.required:
                missing.append(port)
        return values, missing

    def _await_input(
        self,
        ctx: RunContext,
        node: WorkflowNode,
        definition: NodeDefinition,
        missing: list[InputPort],
    ) -> None:
        self._set_node_status(ctx, node, NodeStatus.WAITING)
        ctx.pending_inputs[node.id] = self._pending_request(node, definition, missing)
        logger.info(f"Node {node.id} waiting for input: {', '.join(p.name for p in missing)}")
        self._publish()

    @staticmethod
    def _pending_request(
        node: WorkflowNode, definition: NodeDefinition, missing: list[InputPort]
    ) -> PendingInputRequest:
        return PendingInputRequest(
            node_id=node.id,
            node_name=node.display_name,
            form=list(definition.inputs),
            status=PendingInputStatus.WAITING,
            prefill=dict(node.form_values),
            missing=[port.name for port in missing],
        )

    def _complete_node(self, ctx: RunContext, node: WorkflowNode, output: Any) -> None:
        node.record_output(output)
        ctx.results[node.id] = output
        self._set_node_status(ctx, node, NodeStatus.DONE)
        released = ctx.graph.satisfy(node.id)
        ctx.ready.extend(released)
        logger.info(f"Node {node.id} done" + (f", released {released}" if released else ""))
        self._publish()

    def _fail_node(self, ctx: RunContext, node: WorkflowNode, error: EngineError, pause: bool) -> None:
        node.error = str(error)
        logger.error(f"Node {node.id} failed: {error}")
        self._set_node_status(ctx, node, NodeStatus.ERROR)
        if pause and self._status == RunStatus.PROGRESSING:
            self._enter_paused()
            logger.info(f"Run {ctx.run_id} paused after failure of node {node.id}")
        self._publish()

    # ========== Helpers ==========

    def _is_current(self, ctx: RunContext | None) -> bool:
        return ctx is not None and ctx is self._context and ctx.active

    def _release_request(self, node_id: str, request: InputRequest) -> bool:
        """Forget an answered or abandoned request. True if it was the newest one for the node."""
        if self._open_requests.get(node_id) is request:
            del self._open_requests[node_id]
            return True
        return False

    def _in_flight_status(self) -> NodeStatus:
        """Nodes launched before a pause started are shown as PAUSED."""
        if self._status == RunStatus.PAUSED:
            return NodeStatus.PAUSED
        return NodeStatus.PROGRESSING

    @staticmethod
    def _set_node_status(ctx: RunContext, node: WorkflowNode, status: NodeStatus) -> None:
        """Single write path for node status; outgoing links mirror the source."""
        node.status = status
        for link in ctx.links_from(node.id):
            link.status = status

    def _publish(self) -> None:
        self._version += 1
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Status listener failed")
