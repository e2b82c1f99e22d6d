"""Tool registry: aggregates skill tool schemas and dispatches by tool name."""

from typing import Any

from ..errors import DuplicateToolError, UnknownToolError
from ..utils.logging import get_logger
from .base import BaseSkill, ToolDefinition

logger = get_logger(__name__)


class SkillRegistry:
    """
    Registry of capability providers.

    Built once at startup. Every tool name maps to exactly one skill;
    registering a name that is already owned fails immediately.
    """

    def __init__(self) -> None:
        self._skills: dict[str, BaseSkill] = {}
        self._tool_owners: dict[str, BaseSkill] = {}
        self._schemas: list[ToolDefinition] = []

    def register(self, skill: BaseSkill) -> None:
        """
        Register a skill and all of its tools.

        Raises:
            DuplicateToolError: If a tool name is already owned by another skill
            ValueError: If a skill with the same name is already registered
        """
        if skill.name in self._skills:
            raise ValueError(f"Skill already registered: {skill.name}")

        # Check everything first so a rejected skill leaves no partial state
        for tool in skill.tools:
            owner = self._tool_owners.get(tool.name)
            if owner is not None:
                raise DuplicateToolError(tool.name, owner.name, skill.name)

        self._skills[skill.name] = skill
        for tool in skill.tools:
            self._tool_owners[tool.name] = skill
            self._schemas.append(tool)

        logger.info("Registered skill", skill=skill.name, tools=[t.name for t in skill.tools])

    def all_schemas(self) -> list[ToolDefinition]:
        """All tool definitions, flattened in registration order."""
        return list(self._schemas)

    def to_api(self) -> list[dict[str, Any]]:
        """Tool catalog in the completion service format."""
        return [tool.to_api() for tool in self._schemas]

    def get_skill(self, name: str) -> BaseSkill | None:
        """Get a skill by name."""
        return self._skills.get(name)

    def owner_of(self, tool_name: str) -> BaseSkill | None:
        """Get the skill that owns a tool."""
        return self._tool_owners.get(tool_name)

    async def invoke(self, tool_name: str, tool_input: dict[str, Any]) -> Any:
        """
        Execute a tool by name.

        Raises:
            UnknownToolError: If no skill owns the tool
            Exception: Whatever the skill raises
        """
        skill = self._tool_owners.get(tool_name)
        if skill is None:
            raise UnknownToolError(tool_name)
        return await skill.execute(tool_name, tool_input)

    async def initialize_all(self) -> None:
        """Initialize every registered skill."""
        for skill in self._skills.values():
            await skill.initialize()
        logger.info("Skill registry initialized", skill_count=len(self._skills), tool_count=len(self._schemas))

    async def shutdown_all(self) -> None:
        """Shutdown all skills."""
        for skill in self._skills.values():
            try:
                await skill.shutdown()
            except Exception as e:
                logger.error("Skill shutdown failed", skill=skill.name, error=str(e))

    def get_stats(self) -> dict[str, Any]:
        """Get registry statistics."""
        return {
            "total_skills": len(self._skills),
            "total_tools": len(self._schemas),
            "skill_names": list(self._skills.keys()),
        }
