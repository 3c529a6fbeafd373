"""HTTP studio for driving a workflow run from a browser."""

from nodeflow.studio.server import app, get_engine, set_engine

__all__ = ["app", "get_engine", "set_engine"]
