"""Terminal UI components: status tables, level view and input prompts."""

from nodeflow.cli_ui.input_prompt import TerminalInputResolver
from nodeflow.cli_ui.status_renderer import StatusTableRenderer, TerminalGraphRenderer

__all__ = [
    "StatusTableRenderer",
    "TerminalGraphRenderer",
    "TerminalInputResolver",
]
