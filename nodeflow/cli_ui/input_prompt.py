"""Terminal input resolver.

Collects values for a WAITING node from presets (``--set node.field=value``)
and, when interactive, from Rich prompts. Prompts block, so they run in a
worker thread to keep other node tasks moving.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm, Prompt

from nodeflow.core.definitions import InputPort, InputPortType
from nodeflow.core.errors import InputAbandoned
from nodeflow.core.models import InputRequest, InputResponse

logger = logging.getLogger(__name__)


def is_multi_value(port: InputPort) -> bool:
    """Fields that collect a list of values."""
    if port.type == InputPortType.IMAGES:
        return True
    return port.type == InputPortType.SELECT and port.max != 1


class TerminalInputResolver:
    """
    InputResolver backed by presets and the terminal.

    Args:
        console: Rich console for prompts
        presets: node_id -> {field: value}, applied before prompting
        interactive: If False, a required field without a preset abandons the request
    """

    def __init__(
        self,
        console: Console | None = None,
        presets: dict[str, dict[str, Any]] | None = None,
        interactive: bool = True,
    ):
        self.console = console or Console()
        self.presets = presets or {}
        self.interactive = interactive

    async def request(self, request: InputRequest) -> InputResponse:
        values = dict(request.prefill)
        values.update(self.presets.get(request.node_id, {}))

        missing = [port for port in request.form if port.name not in values]
        if not missing:
            return InputResponse(node_id=request.node_id, values=values)

        if not self.interactive:
            required = [port.name for port in missing if port.required]
            if required:
                raise InputAbandoned(
                    f"Input request for node '{request.node_id}' has no value for: {', '.join(required)}"
                )
            return InputResponse(node_id=request.node_id, values=values)

        self.console.print(f"\n[bold]Input needed for[/] [cyan]{escape(request.node_name)}[/]")
        for port in missing:
            value = await asyncio.to_thread(self._ask, port)
            if value is not None:
                values[port.name] = value
        return InputResponse(node_id=request.node_id, values=values)

    def cancel(self, node_id: str | None = None) -> None:
        # Prompts already on screen cannot be withdrawn; the engine discards
        # answers for invalidated runs.
        logger.debug(f"Terminal input cancel requested for {node_id or 'all nodes'}")

    def _ask(self, port: InputPort) -> Any:
        label = escape(port.label or port.name)
        if not port.required:
            label += " [dim](optional)[/]"

        if port.type == InputPortType.BOOLEAN:
            return Confirm.ask(label, console=self.console, default=False)

        choices = [str(option.value) for option in port.options] or None
        if is_multi_value(port):
            hint = f" [dim](comma separated{f', max {port.max}' if port.max else ''})[/]"
            answer = Prompt.ask(label + hint, console=self.console, default="")
            items = [item.strip() for item in answer.split(",") if item.strip()]
            return items or None

        answer = Prompt.ask(
            label,
            console=self.console,
            choices=choices if port.type == InputPortType.SELECT else None,
            default=... if port.required else "",
        )
        if answer == "":
            return None
        return answer
