"""Persistent per-user conversation history."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, DateTime, Integer, String, Text, desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ..errors import PersistenceError
from ..utils.config import get_settings
from ..utils.logging import get_logger
from .database import Base

logger = get_logger(__name__)

ROLES = ("user", "assistant")


class ConversationRecord(Base):
    """SQLAlchemy model for one stored chat message."""

    __tablename__ = "conversation_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(200), nullable=False, index=True)
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


@dataclass(frozen=True)
class Message:
    """A stored chat message."""

    user_id: str
    role: str
    text: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_llm(self) -> dict[str, str]:
        """Render as a completion API message."""
        return {"role": self.role, "content": self.text}


def make_async_url(db_url: str) -> str:
    """Force the aiosqlite driver for sqlite URLs and create the parent directory."""
    if "sqlite:///" in db_url and "aiosqlite" not in db_url:
        db_url = db_url.replace("sqlite:///", "sqlite+aiosqlite:///")
    if "sqlite" in db_url and ":memory:" not in db_url:
        db_path = db_url.split("///")[-1]
        if db_path:
            Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
    return db_url


class ConversationStore:
    """
    Append-only conversation history.

    Only two operations exist: ``append`` one message and read the
    ``recent`` window for a user. Storage errors surface as
    ``PersistenceError`` so the caller can abort the turn.
    """

    def __init__(
        self,
        db_url: str | None = None,
        history_limit: int | None = None,
        engine: AsyncEngine | None = None,
    ) -> None:
        self.settings = get_settings()
        self.history_limit = history_limit or self.settings.memory.history_limit

        if engine is None:
            engine = create_async_engine(
                make_async_url(db_url or self.settings.database.url),
                echo=self.settings.database.echo,
            )
        self._engine = engine
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self._initialized = False

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def initialize(self) -> None:
        """Create the schema if needed."""
        if self._initialized:
            return
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not initialize conversation store: {e}") from e
        self._initialized = True
        logger.info("Conversation store initialized", history_limit=self.history_limit)

    async def append(self, user_id: str, role: str, text: str) -> Message:
        """
        Store one message.

        Args:
            user_id: Platform user the conversation belongs to
            role: "user" or "assistant"
            text: Message text

        Returns:
            The stored message

        Raises:
            PersistenceError: If the write fails
        """
        if role not in ROLES:
            raise ValueError(f"Invalid role: {role}")
        if not self._initialized:
            await self.initialize()

        message = Message(user_id=user_id, role=role, text=text)
        try:
            async with self._session_factory() as session:
                session.add(
                    ConversationRecord(
                        user_id=user_id,
                        role=role,
                        content=text,
                        created_at=message.timestamp,
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to save message", user_id=user_id, role=role, error=str(e))
            raise PersistenceError(f"Could not save {role} message: {e}") from e
        return message

    async def recent(self, user_id: str) -> list[Message]:
        """
        Get the most recent messages for a user, oldest first.

        Returns at most ``history_limit`` messages; an empty list when the
        user has no history.
        """
        if not self._initialized:
            await self.initialize()

        # Newest first so LIMIT keeps the tail; id breaks timestamp ties
        query = (
            select(ConversationRecord)
            .where(ConversationRecord.user_id == user_id)
            .order_by(desc(ConversationRecord.created_at), desc(ConversationRecord.id))
            .limit(self.history_limit)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(query)).scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load history: {e}") from e

        return [
            Message(
                user_id=row.user_id,
                role=row.role,
                text=row.content,
                timestamp=_as_utc(row.created_at),
            )
            for row in reversed(rows)
        ]

    async def close(self) -> None:
        """Dispose of the engine's connections."""
        await self._engine.dispose()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
