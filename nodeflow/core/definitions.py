"""Node definition library.

A node definition describes a node type available in the editor palette: its
ordered input ports (also used as the input form schema), output ports and
configurable properties with their defaults. Graph nodes reference a
definition by id.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from nodeflow.core.errors import DefinitionLoadError

logger = logging.getLogger(__name__)


class InputPortType(str, Enum):
    """Value types carried by ports and input form fields"""

    STRING = "string"
    PROMPT = "prompt"
    NUMBER = "number"
    BOOLEAN = "boolean"
    SELECT = "select"  # Single or multi select (see max)
    CHECKBOX = "checkbox"
    IMAGE = "image"
    IMAGES = "images"  # Attachment list (see max)
    OBJECT = "object"  # Structured value, submitted as JSON text


class PropertyType(str, Enum):
    """Editor widgets for node properties"""

    TEXTAREA = "textarea"
    INPUT_NUMBER = "inputNumber"
    CHECK_GROUP = "checkGroup"
    SELECT = "select"
    SWITCH = "switch"


class PortOption(BaseModel):
    """Choice offered by a select field"""

    label: str
    value: Any


class InputPort(BaseModel):
    """Input port of a node; doubles as a field of the node's input form"""

    name: str
    type: InputPortType = InputPortType.STRING
    label: str | None = None
    required: bool = False
    max: int | None = None  # Max selections (select) or attachments (images)
    min: int | None = None
    options: list[PortOption] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("Port name cannot be empty")
        return v


class OutputPort(BaseModel):
    """Output port of a node"""

    name: str
    type: InputPortType = InputPortType.STRING


class NodeProperty(BaseModel):
    """Static configuration value of a node type"""

    name: str
    label: str = ""
    type: PropertyType = PropertyType.TEXTAREA
    default: Any = None
    options: list[PortOption] = Field(default_factory=list)
    max: float | None = None
    min: float | None = None


class NodeDefinition(BaseModel):
    """Node type from the definition library"""

    id: str
    title: str | None = None
    category: str | None = None
    executor_ref: str | None = None  # Default executor for nodes of this type
    inputs: list[InputPort] = Field(default_factory=list)
    outputs: list[OutputPort] = Field(default_factory=list)
    properties: list[NodeProperty] = Field(default_factory=list)

    @property
    def default_properties(self) -> dict[str, Any]:
        return {prop.name: prop.default for prop in self.properties}

    def merge_properties(self, overrides: dict[str, Any] | None) -> dict[str, Any]:
        """Defaults merged with per-instance overrides (overrides win)."""
        return {**self.default_properties, **(overrides or {})}


class DefinitionRegistry:
    """In-memory node definition resolver.

    USAGE:
        registry = DefinitionRegistry.from_yaml(Path("definitions.yaml"))
        definition = registry.resolve("prompt_builder")
    """

    def __init__(self, definitions: Iterable[NodeDefinition] = ()):
        self._definitions: dict[str, NodeDefinition] = {}
        for definition in definitions:
            self.add(definition)

    def add(self, definition: NodeDefinition) -> None:
        if definition.id in self._definitions:
            logger.info(f"Replacing node definition '{definition.id}'")
        self._definitions[definition.id] = definition

    def resolve(self, definition_ref: str | None) -> NodeDefinition | None:
        if definition_ref is None:
            return None
        return self._definitions.get(definition_ref)

    def ids(self) -> list[str]:
        return list(self._definitions)

    def __contains__(self, definition_ref: object) -> bool:
        return definition_ref in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    @classmethod
    def from_yaml(cls, path: Path) -> DefinitionRegistry:
        """Load a definition library.

        Expected layout:
            definitions:
              - id: prompt_builder
                title: Prompt builder
                executor_ref: enhance_prompt
                inputs: [{name: topic, type: prompt, required: true}]
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise DefinitionLoadError(f"Cannot read definitions from {path}: {e}") from e

        if isinstance(data, dict):
            entries = data.get("definitions", [])
        else:
            entries = data
        if not isinstance(entries, list):
            raise DefinitionLoadError(f"{path}: 'definitions' must be a list")

        try:
            return cls(NodeDefinition.model_validate(entry) for entry in entries)
        except ValidationError as e:
            raise DefinitionLoadError(f"{path}: invalid node definition: {e}") from e
