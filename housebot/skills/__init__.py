"""Capability providers for HouseBot."""

from .base import BaseSkill, ToolDefinition
from .registry import SkillRegistry

__all__ = ["BaseSkill", "ToolDefinition", "SkillRegistry"]
