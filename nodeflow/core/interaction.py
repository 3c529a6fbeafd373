"""Asyncio bridge between the engine and an input-collecting UI.

The engine side awaits request(); the UI side polls get_pending_requests()
and answers with submit() or dismiss(). Everything runs on one event loop,
so no locking is needed.

USAGE (engine side - suspends the calling task only):
    response = await bridge.request(InputRequest(node_id="n1", node_name="Prompt"))

USAGE (UI side - NON-BLOCKING):
    for req in bridge.get_pending_requests():
        bridge.submit(req.node_id, {"topic": "cats"})
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from nodeflow.core.errors import InputAbandoned
from nodeflow.core.models import InputRequest, InputResponse

logger = logging.getLogger(__name__)


class InputBridge:
    """Request/response channel with one open request per node.

    A newer request for the same node supersedes the previous one, which is
    rejected with InputAbandoned.
    """

    def __init__(self):
        self._pending: dict[str, tuple[InputRequest, asyncio.Future[InputResponse]]] = {}

    async def request(self, request: InputRequest) -> InputResponse:
        """Publish a request and wait for the UI to answer it.

        Raises:
            InputAbandoned: dismissed, replaced by a newer request, or cancelled
        """
        loop = asyncio.get_running_loop()
        self._reject(request.node_id, "replaced by a newer request")

        future: asyncio.Future[InputResponse] = loop.create_future()
        self._pending[request.node_id] = (request, future)
        try:
            return await future
        finally:
            current = self._pending.get(request.node_id)
            if current is not None and current[1] is future:
                del self._pending[request.node_id]

    def get_pending_requests(self) -> list[InputRequest]:
        return [request for request, future in self._pending.values() if not future.done()]

    def has_pending(self, node_id: str) -> bool:
        entry = self._pending.get(node_id)
        return entry is not None and not entry[1].done()

    def submit(self, node_id: str, values: dict[str, Any]) -> bool:
        """Answer the open request for a node. Returns True if one was open."""
        entry = self._pending.get(node_id)
        if entry is None or entry[1].done():
            return False
        entry[1].set_result(InputResponse(node_id=node_id, values=dict(values)))
        return True

    def dismiss(self, node_id: str) -> bool:
        """Close the form without submitting. Returns True if a request was open."""
        return self._reject(node_id, "input form closed")

    def cancel(self, node_id: str | None = None) -> None:
        """Abandon the open request for one node, or all of them."""
        node_ids = [node_id] if node_id is not None else list(self._pending)
        for pending_id in node_ids:
            self._reject(pending_id, "cancelled")

    def _reject(self, node_id: str, reason: str) -> bool:
        entry = self._pending.pop(node_id, None)
        if entry is None or entry[1].done():
            return False
        entry[1].set_exception(InputAbandoned(f"Input request for node '{node_id}' {reason}"))
        logger.info(f"Input request for node {node_id} {reason}")
        return True
