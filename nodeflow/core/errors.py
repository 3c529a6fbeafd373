"""Error taxonomy for the workflow engine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class EngineError(Exception):
    """Base error for the workflow engine."""

    pass


class ValidationErrorKind(str, Enum):
    """Why a resolved input value was rejected."""

    REQUIRED = "required"
    PARSE_ERROR = "parse_error"
    LIMIT_EXCEEDED = "limit_exceeded"


@dataclass
class FieldError:
    """A single rejected input field."""

    field: str
    kind: ValidationErrorKind
    message: str


class ValidationError(EngineError):
    """Resolved input values failed validation before execution."""

    def __init__(self, errors: list[FieldError]):
        self.errors = errors
        details = "; ".join(f"{e.field}: {e.message}" for e in errors)
        super().__init__(f"Input validation failed ({details})")

    @property
    def kinds(self) -> set[ValidationErrorKind]:
        return {e.kind for e in self.errors}

    def as_dict(self) -> dict[str, str]:
        return {e.field: e.message for e in self.errors}


class ExecutionError(EngineError):
    """The external executor raised while running a node."""

    def __init__(self, node_id: str, cause: BaseException):
        self.node_id = node_id
        self.cause = cause
        super().__init__(f"Node '{node_id}' execution failed: {cause}")


class InputAbandoned(EngineError):
    """A pending input request was dismissed, replaced or cancelled."""

    pass


class ExecutorNotFoundError(EngineError):
    """No executor is registered under the requested reference."""

    pass


class EngineStateError(EngineError):
    """Control command is not valid in the current run state."""

    pass


class GraphLoadError(EngineError):
    """Workflow graph document could not be loaded."""

    pass


class DefinitionLoadError(EngineError):
    """Node definition library could not be loaded."""

    pass


class ConfigError(EngineError):
    """Engine configuration is malformed."""

    pass
