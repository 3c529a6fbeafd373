"""FastAPI backend for the nodeflow studio.

This module provides:
- REST API for the run/pause/stop/retry-input control surface
- Pending input listing, submission and dismissal (the UI side of InputBridge)
- Validated graph replacement while the run is stopped
- WebSocket stream of status snapshots

Architecture Notes:
- One engine per server process, installed with set_engine() before the app
  starts serving (the CLI `serve` command does this).
- Engine mutations happen on the server's event loop; no locking is needed.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from nodeflow.core.engine import WorkflowEngine
from nodeflow.core.errors import EngineStateError
from nodeflow.core.graph_schema import WorkflowGraph
from nodeflow.core.interaction import InputBridge
from nodeflow.core.models import NodeStatus, RunStatus, StatusSnapshot

logger = logging.getLogger(__name__)

app = FastAPI(
    title="nodeflow Studio API",
    description="Control surface and live status for a workflow run",
    version="0.1.0",
)


# Browser clients must come from the studio's own origin or from an origin
# listed in NODEFLOW_STUDIO_ORIGINS (comma separated, e.g. a front-end dev server).
def studio_origins(port: int | None = None) -> list[str]:
    """Origins allowed to call the API."""
    port = port or int(os.environ.get("NODEFLOW_STUDIO_PORT", "8000"))
    origins = [f"http://localhost:{port}", f"http://127.0.0.1:{port}"]
    extra = os.environ.get("NODEFLOW_STUDIO_ORIGINS", "")
    origins.extend(origin.strip().rstrip("/") for origin in extra.split(",") if origin.strip())
    return origins


ALLOWED_ORIGINS = studio_origins()
LOCAL_HOSTS = ("127.0.0.1", "localhost", "::1")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type"],
)


def origin_rejection(origin: str | None, client_host: str | None) -> str | None:
    """Reason to refuse a request, or None when it may proceed."""
    if origin is not None:
        return None if origin in ALLOWED_ORIGINS else f"Origin '{origin}' not allowed"
    if client_host not in LOCAL_HOSTS:
        return "Requests without an Origin header must come from localhost"
    return None


@app.middleware("http")
async def validate_request_origin(request: Request, call_next):
    reason = origin_rejection(
        request.headers.get("origin"), request.client.host if request.client else None
    )
    if reason is not None:
        return JSONResponse(status_code=403, content={"detail": reason})
    return await call_next(request)


# Global instances - installed by set_engine()
_engine: WorkflowEngine | None = None
_bridge: InputBridge | None = None
_unsubscribe = None
_background_tasks: set[asyncio.Task] = set()


def set_engine(engine: WorkflowEngine | None, bridge: InputBridge | None = None) -> None:
    """Install the engine served by this app (None to uninstall)."""
    global _engine, _bridge, _unsubscribe
    if _unsubscribe is not None:
        _unsubscribe()
        _unsubscribe = None
    _engine = engine
    if engine is None:
        _bridge = None
        return
    _bridge = bridge if bridge is not None else engine.input_resolver
    _unsubscribe = engine.subscribe(manager.publish)


def get_engine() -> WorkflowEngine:
    if _engine is None:
        raise HTTPException(status_code=503, detail="No workflow loaded")
    return _engine


def get_bridge() -> InputBridge:
    if not isinstance(_bridge, InputBridge):
        raise HTTPException(status_code=503, detail="Input bridge not available")
    return _bridge


def _snapshot_json(snapshot: StatusSnapshot) -> dict[str, Any]:
    return snapshot.model_dump(mode="json")


# ========== API Models ==========


class GraphUpdateRequest(BaseModel):
    """Request to replace the workflow graph"""

    graph: WorkflowGraph


class InputSubmission(BaseModel):
    """Values for an open input request"""

    values: dict[str, Any] = Field(default_factory=dict)


class ControlResponse(BaseModel):
    """Result of a control action"""

    accepted: bool
    run_status: RunStatus
    snapshot: dict[str, Any]


# ========== Control Surface ==========


@app.get("/api/status")
def get_status() -> dict[str, Any]:
    """Current status projection."""
    return _snapshot_json(get_engine().snapshot())


@app.post("/api/run")
async def run_workflow() -> ControlResponse:
    """Start a fresh run, or resume a paused one."""
    engine = get_engine()
    accepted = engine.status != RunStatus.PROGRESSING
    await engine.run()
    return ControlResponse(
        accepted=accepted, run_status=engine.status, snapshot=_snapshot_json(engine.snapshot())
    )


@app.post("/api/pause")
def pause_workflow() -> ControlResponse:
    engine = get_engine()
    accepted = engine.pause()
    return ControlResponse(
        accepted=accepted, run_status=engine.status, snapshot=_snapshot_json(engine.snapshot())
    )


@app.post("/api/stop")
def stop_workflow() -> ControlResponse:
    engine = get_engine()
    engine.stop()
    return ControlResponse(
        accepted=True, run_status=engine.status, snapshot=_snapshot_json(engine.snapshot())
    )


@app.post("/api/nodes/{node_id}/retry-input", status_code=202)
async def retry_node_input(node_id: str) -> dict[str, str]:
    """
    Open an input request for a WAITING node.

    The request is answered through /api/pending-inputs/{node_id}; this call
    returns as soon as the request is open.
    """
    engine = get_engine()
    node = engine.get_node(node_id)
    if node is None:
        raise HTTPException(status_code=404, detail=f"Node '{node_id}' not found")
    if node.status != NodeStatus.WAITING:
        raise HTTPException(
            status_code=409,
            detail=f"Node '{node_id}' is not waiting for input (status: {node.status.value})",
        )

    task = asyncio.create_task(_retry_input(engine, node_id))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    # Let the request reach the bridge before answering
    await asyncio.sleep(0)
    return {"node_id": node_id, "status": "requested"}


async def _retry_input(engine: WorkflowEngine, node_id: str) -> None:
    try:
        accepted = await engine.retry_input(node_id)
    except Exception as e:
        logger.error(f"retry_input for node {node_id} failed: {e}")
        return
    logger.info(f"retry_input for node {node_id}: {'re-queued' if accepted else 'not re-queued'}")


# ========== Pending Inputs ==========


@app.get("/api/pending-inputs")
def list_pending_inputs() -> list[dict[str, Any]]:
    """Input requests of the current run, with open-request markers."""
    engine = get_engine()
    bridge = get_bridge()
    return [
        {**request.model_dump(mode="json"), "open": bridge.has_pending(request.node_id)}
        for request in engine.pending_inputs()
    ]


@app.post("/api/pending-inputs/{node_id}")
def submit_pending_input(node_id: str, submission: InputSubmission) -> dict[str, str]:
    bridge = get_bridge()
    if not bridge.submit(node_id, submission.values):
        raise HTTPException(status_code=404, detail=f"No open input request for node '{node_id}'")
    return {"node_id": node_id, "status": "submitted"}


@app.delete("/api/pending-inputs/{node_id}")
def dismiss_pending_input(node_id: str) -> dict[str, str]:
    bridge = get_bridge()
    if not bridge.dismiss(node_id):
        raise HTTPException(status_code=404, detail=f"No open input request for node '{node_id}'")
    return {"node_id": node_id, "status": "dismissed"}


# ========== Graph ==========


@app.put("/api/graph")
def replace_graph(request: GraphUpdateRequest) -> dict[str, Any]:
    """Replace the workflow graph. Only allowed while the run is stopped."""
    engine = get_engine()
    errors = request.graph.validate_graph(
        definitions=engine.definitions,
        executor_refs=engine.executor.names() if hasattr(engine.executor, "names") else None,
    )
    if errors:
        raise HTTPException(status_code=400, detail={"validation_errors": errors})
    try:
        engine.load_graph(request.graph)
    except EngineStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return {
        "id": request.graph.id,
        "nodes": len(request.graph.nodes),
        "links": len(request.graph.links),
    }


# ========== WebSocket ==========


class ConnectionManager:
    """Fan-out of status snapshots to WebSocket clients."""

    def __init__(self):
        self.connections: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.connections.add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        self.connections.discard(websocket)

    def publish(self, snapshot: StatusSnapshot) -> None:
        """Engine listener; schedules a broadcast on the running loop."""
        if not self.connections:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; status snapshot not broadcast")
            return
        task = loop.create_task(self.broadcast(_snapshot_json(snapshot)))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)

    async def broadcast(self, message: dict[str, Any]) -> None:
        async def safe_send(conn: WebSocket):
            try:
                await conn.send_json(message)
            except Exception as e:
                logger.warning(f"Dropping WebSocket client: {e}")
                self.disconnect(conn)

        await asyncio.gather(*(safe_send(conn) for conn in list(self.connections)))


manager = ConnectionManager()


@app.websocket("/ws/status")
async def status_websocket(websocket: WebSocket):
    """Send the current snapshot, then every snapshot the engine publishes."""
    await manager.connect(websocket)
    try:
        if _engine is not None:
            await websocket.send_json(_snapshot_json(_engine.snapshot()))
        while True:
            # Clients only listen; incoming text is ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)
