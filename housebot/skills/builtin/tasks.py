"""Tasks skill: household to-do and grocery lists stored in the local database."""

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String, Text, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ...memory.conversation import make_async_url
from ...memory.database import Base
from ...utils.config import get_settings
from ...utils.logging import get_logger
from ..base import BaseSkill

logger = get_logger(__name__)


class TaskRecord(Base):
    """SQLAlchemy model for a list item."""

    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True)
    title = Column(Text, nullable=False)
    list_name = Column("list", String(100), nullable=False, default="general")
    due_date = Column(String(10))  # ISO date, e.g. "2026-02-25"
    completed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True))


class TasksSkill(BaseSkill):
    """Add, list, and complete items on named lists (grocery, general, ...)."""

    name = "tasks"
    description = "Task and grocery list management"

    def __init__(self, config: dict[str, Any] | None = None, engine: AsyncEngine | None = None) -> None:
        super().__init__(config)
        self.default_list = self.config.get("default_list", "general")
        if engine is None:
            engine = create_async_engine(make_async_url(get_settings().database.url))
        self._engine = engine
        self._session_factory = async_sessionmaker(self._engine, class_=AsyncSession, expire_on_commit=False)

    async def initialize(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await super().initialize()

    def _register_tools(self) -> None:
        self.register_tool(
            name="add_task",
            description=(
                "Add a task or item to a list. Use list='grocery' for grocery/shopping items, "
                "list='general' for to-do items, or any other list name the user specifies. "
                "Set due_date when the user mentions a deadline or timeframe."
            ),
            properties={
                "title": {"type": "string", "description": "The task or item to add"},
                "list": {
                    "type": "string",
                    "description": "Which list to add to: 'grocery', 'general', or a custom name",
                    "default": "general",
                },
                "due_date": {
                    "type": "string",
                    "description": "Due date in ISO format (YYYY-MM-DD). Resolve relative dates like 'tomorrow'.",
                },
            },
            required=["title"],
        )
        self.register_tool(
            name="list_tasks",
            description=(
                "List items on a list. Use list='grocery', list='general', a custom name, "
                "or 'all' for everything."
            ),
            properties={
                "list": {"type": "string", "description": "Which list to show, or 'all'", "default": "all"},
                "include_completed": {
                    "type": "boolean",
                    "description": "Whether to include completed items",
                    "default": False,
                },
            },
        )
        self.register_tool(
            name="complete_task",
            description="Mark a task as completed by its title (partial match supported).",
            properties={
                "title": {"type": "string", "description": "The task title (or partial match) to complete"},
            },
            required=["title"],
        )

    async def execute(self, tool_name: str, tool_input: dict[str, Any]) -> Any:
        if tool_name == "add_task":
            return await self._add_task(tool_input)
        elif tool_name == "list_tasks":
            return await self._list_tasks(tool_input)
        elif tool_name == "complete_task":
            return await self._complete_task(tool_input)
        raise ValueError(f"Unknown tool: {tool_name}")

    async def _add_task(self, tool_input: dict[str, Any]) -> dict[str, Any]:
        title = str(tool_input.get("title", "")).strip()
        if not title:
            raise ValueError("title is required")
        record = TaskRecord(
            id=str(uuid4()),
            title=title,
            list_name=tool_input.get("list") or self.default_list,
            due_date=tool_input.get("due_date") or None,
            completed=False,
            created_at=datetime.now(timezone.utc),
        )
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
        logger.info("Task added", list=record.list_name, title=title)
        return {"success": True, "id": record.id, "title": title, "list": record.list_name, "due_date": record.due_date}

    async def _list_tasks(self, tool_input: dict[str, Any]) -> dict[str, Any]:
        list_name = tool_input.get("list") or "all"
        include_completed = bool(tool_input.get("include_completed", False))

        query = select(TaskRecord).order_by(TaskRecord.created_at)
        if list_name != "all":
            query = query.where(TaskRecord.list_name == list_name)
        if not include_completed:
            query = query.where(TaskRecord.completed.is_(False))

        async with self._session_factory() as session:
            rows = (await session.execute(query)).scalars().all()

        return {
            "list": list_name,
            "count": len(rows),
            "items": [
                {
                    "id": row.id,
                    "title": row.title,
                    "list": row.list_name,
                    "due_date": row.due_date,
                    "completed": row.completed,
                }
                for row in rows
            ],
        }

    async def _complete_task(self, tool_input: dict[str, Any]) -> dict[str, Any]:
        needle = str(tool_input.get("title", "")).strip().lower()
        if not needle:
            raise ValueError("title is required")

        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(TaskRecord).where(TaskRecord.completed.is_(False)).order_by(TaskRecord.created_at)
                )
            ).scalars().all()
            match = next((row for row in rows if needle in row.title.lower()), None)
            if match is None:
                return {"success": False, "error": f'No open task matching "{tool_input.get("title")}" found'}
            match.completed = True
            match.completed_at = datetime.now(timezone.utc)
            await session.commit()
            return {"success": True, "title": match.title, "list": match.list_name}

    async def shutdown(self) -> None:
        await self._engine.dispose()
        await super().shutdown()
