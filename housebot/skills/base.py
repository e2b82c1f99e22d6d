"""Base capability provider interface for HouseBot."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ToolDefinition:
    """A tool the completion service may ask to run."""

    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_api(self) -> dict[str, Any]:
        """Render in the Anthropic tool format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class BaseSkill(ABC):
    """
    Abstract base class for capability providers.

    A skill owns a fixed set of tools and executes them by name. Tools are
    declared once in ``_register_tools`` and never change afterwards.
    """

    # Skill metadata - override in subclasses
    name: str = "base_skill"
    description: str = "Base skill interface"

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        """
        Initialize the skill.

        Args:
            config: Skill-specific configuration
        """
        self.config = config or {}
        self._tools: dict[str, ToolDefinition] = {}
        self._initialized = False

        self._register_tools()

    @abstractmethod
    def _register_tools(self) -> None:
        """Declare all tools provided by this skill."""
        pass

    def register_tool(
        self,
        name: str,
        description: str,
        properties: dict[str, Any] | None = None,
        required: list[str] | None = None,
    ) -> None:
        """
        Declare a tool.

        Args:
            name: Tool name, unique across all skills
            description: Description for the model
            properties: JSON schema properties of the tool input
            required: Names of required input properties
        """
        if name in self._tools:
            raise ValueError(f"Tool '{name}' declared twice by skill '{self.name}'")
        self._tools[name] = ToolDefinition(
            name=name,
            description=description,
            input_schema={
                "type": "object",
                "properties": properties or {},
                "required": required or [],
            },
        )

    @property
    def tools(self) -> list[ToolDefinition]:
        """Tool definitions in declaration order."""
        return list(self._tools.values())

    async def initialize(self) -> None:
        """Async setup hook. Override for connections, schema creation, etc."""
        self._initialized = True

    async def shutdown(self) -> None:
        """Release resources."""
        self._initialized = False

    @abstractmethod
    async def execute(self, tool_name: str, tool_input: dict[str, Any]) -> Any:
        """
        Run one tool.

        Args:
            tool_name: Name of a tool declared by this skill
            tool_input: Arguments produced by the model

        Returns:
            A JSON-serializable result

        Raises:
            Any exception; the orchestrator reports it back to the model.
        """
        pass

    def to_dict(self) -> dict[str, Any]:
        """Convert skill metadata to dictionary."""
        return {
            "name": self.name,
            "description": self.description,
            "tools": [t.name for t in self.tools],
            "initialized": self._initialized,
        }
