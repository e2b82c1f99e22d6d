"""Built-in skills for HouseBot."""

from .tasks import TasksSkill

__all__ = ["TasksSkill"]
