"""nodeflow - visual workflow execution engine.

Turns a node/link graph drawn in an editor into a live, dependency-ordered
execution with user-input gating and pause/resume/stop control.
"""

__version__ = "0.1.0"
