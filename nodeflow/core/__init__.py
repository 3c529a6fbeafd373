"""Core modules for the nodeflow engine."""

from nodeflow.core.definitions import DefinitionRegistry, InputPort, NodeDefinition
from nodeflow.core.engine import WorkflowEngine
from nodeflow.core.errors import (
    EngineError,
    ExecutionError,
    InputAbandoned,
    ValidationError,
)
from nodeflow.core.executors import ExecutorRegistry, default_registry
from nodeflow.core.graph_schema import GraphLink, GraphNode, WorkflowGraph
from nodeflow.core.interaction import InputBridge
from nodeflow.core.models import NodeStatus, RunStatus, StatusSnapshot

__all__ = [
    "DefinitionRegistry",
    "EngineError",
    "ExecutionError",
    "ExecutorRegistry",
    "GraphLink",
    "GraphNode",
    "InputAbandoned",
    "InputBridge",
    "InputPort",
    "NodeDefinition",
    "NodeStatus",
    "RunStatus",
    "StatusSnapshot",
    "ValidationError",
    "WorkflowEngine",
    "WorkflowGraph",
    "default_registry",
]
