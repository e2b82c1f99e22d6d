"""Per-conversation delivery queues and outbound chunking."""

import asyncio
import re
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Coroutine
from uuid import uuid4

from ..utils.config import get_settings
from ..utils.logging import get_logger

logger = get_logger(__name__)

_SENTENCE_END = re.compile(r"[.!?](?=\s)")
_WHITESPACE = re.compile(r"\s")


def split_message(text: str, max_length: int) -> list[str]:
    """
    Split text into chunks of at most ``max_length`` characters.

    Prefers the last paragraph break, then the last sentence end, then the
    last whitespace, and finally cuts hard. A boundary in the first half of
    the window is skipped so chunks never get tiny. Chunks join back into
    exactly the original text.
    """
    if max_length <= 1:
        raise ValueError("max_length must be greater than 1")
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    remaining = text
    min_cut = max_length // 2

    while len(remaining) > max_length:
        window = remaining[:max_length]
        cut = _find_cut(window, min_cut)
        chunks.append(remaining[:cut])
        remaining = remaining[cut:]

    if remaining:
        chunks.append(remaining)
    return chunks


def _find_cut(window: str, min_cut: int) -> int:
    """Index to cut ``window`` at; the chunk is ``window[:cut]``."""
    # Paragraph break: keep the blank line with the chunk before it
    idx = window.rfind("\n\n")
    if idx != -1 and idx + 2 >= min_cut:
        return idx + 2

    # Sentence end: punctuation and the whitespace after it stay together
    sentence_ends = [m.start() for m in _SENTENCE_END.finditer(window)]
    if sentence_ends and sentence_ends[-1] + 2 >= min_cut and sentence_ends[-1] + 2 <= len(window):
        return sentence_ends[-1] + 2

    spaces = [m.start() for m in _WHITESPACE.finditer(window)]
    if spaces and spaces[-1] + 1 >= min_cut:
        return spaces[-1] + 1

    return len(window)


class MessageStatus(str, Enum):
    """Message processing status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class QueuedMessage:
    """A message waiting for its turn in a conversation's queue."""

    sender_id: str
    sender_name: str
    text: str
    image_refs: list[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid4()))
    status: MessageStatus = MessageStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    processed_at: datetime | None = None
    error: str | None = None
    # Original channel message
    source: Any = None


ProcessFunc = Callable[[QueuedMessage], Coroutine[Any, Any, str]]
SendFunc = Callable[[str], Coroutine[Any, Any, None]]


class DeliveryQueue:
    """
    FIFO of pending messages for one conversation.

    At most one drain task runs per queue, so replies go out strictly in
    the order messages arrived. A failing entry gets an apology and the
    drain moves on.
    """

    def __init__(
        self,
        key: str,
        process: ProcessFunc,
        send: SendFunc,
        max_message_length: int,
        pacing_seconds: float | None = None,
        ack_text: str | None = None,
        apology_text: str | None = None,
    ) -> None:
        settings = get_settings()
        self.key = key
        self.max_message_length = max_message_length
        self.pacing_seconds = settings.delivery.pacing_seconds if pacing_seconds is None else pacing_seconds
        self.ack_text = ack_text
        self.apology_text = apology_text or settings.assistant.apology_reply

        self._process = process
        self._send = send
        self._pending: deque[QueuedMessage] = deque()
        self._draining = False
        self._task: asyncio.Task[None] | None = None
        self._processed = 0
        self._failed = 0

    @property
    def is_draining(self) -> bool:
        return self._draining

    def __len__(self) -> int:
        return len(self._pending)

    def enqueue(self, entry: QueuedMessage) -> QueuedMessage:
        """Append an entry and start draining if no drain is running."""
        self._pending.append(entry)
        logger.debug("Message enqueued", queue=self.key, message_id=entry.id, depth=len(self._pending))
        if not self._draining:
            self._draining = True
            self._task = asyncio.create_task(self._drain(), name=f"drain:{self.key}")
        return entry

    async def wait_idle(self) -> None:
        """Wait until everything enqueued so far has been delivered."""
        while self._task is not None and not self._task.done():
            await asyncio.shield(self._task)

    async def _drain(self) -> None:
        try:
            while self._pending:
                entry = self._pending.popleft()
                await self._deliver(entry)
        finally:
            self._draining = False

    async def _deliver(self, entry: QueuedMessage) -> None:
        """Process one entry and send its reply; never raises."""
        entry.status = MessageStatus.PROCESSING
        logger.info("Processing message", queue=self.key, sender=entry.sender_name, message_id=entry.id)

        try:
            if self.ack_text:
                await self._send(self.ack_text)

            reply = await self._process(entry)
            chunks = split_message(reply, self.max_message_length)
            for i, chunk in enumerate(chunks):
                if i > 0 and self.pacing_seconds > 0:
                    await asyncio.sleep(self.pacing_seconds)
                await self._send(chunk)

            entry.status = MessageStatus.COMPLETED
            self._processed += 1
            logger.debug("Reply delivered", queue=self.key, message_id=entry.id, chunks=len(chunks))
        except Exception as e:
            entry.status = MessageStatus.FAILED
            entry.error = str(e)
            self._failed += 1
            logger.error("Message processing failed", queue=self.key, message_id=entry.id, error=str(e), exc_info=True)
            try:
                await self._send(self.apology_text)
            except Exception as send_err:
                logger.error("Failed to send apology", queue=self.key, error=str(send_err))
        finally:
            entry.processed_at = datetime.now(timezone.utc)

    async def stop(self) -> None:
        """Drop pending entries and cancel the running drain."""
        self._pending.clear()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    def get_stats(self) -> dict[str, Any]:
        return {
            "pending": len(self._pending),
            "draining": self._draining,
            "processed": self._processed,
            "failed": self._failed,
        }


class MessageRouter:
    """
    Owns one ``DeliveryQueue`` per conversation.

    Conversations are independent: a slow model call in one group never
    holds up another.
    """

    def __init__(self) -> None:
        self._queues: dict[str, DeliveryQueue] = {}

    def queue_for(
        self,
        key: str,
        *,
        process: ProcessFunc,
        send: SendFunc,
        max_message_length: int,
        ack_text: str | None = None,
    ) -> DeliveryQueue:
        """Get the queue for a conversation, creating it on first use."""
        queue = self._queues.get(key)
        if queue is None:
            queue = DeliveryQueue(
                key=key,
                process=process,
                send=send,
                max_message_length=max_message_length,
                ack_text=ack_text,
            )
            self._queues[key] = queue
            logger.debug("Delivery queue created", queue=key)
        return queue

    def get(self, key: str) -> DeliveryQueue | None:
        return self._queues.get(key)

    async def wait_idle(self) -> None:
        for queue in list(self._queues.values()):
            await queue.wait_idle()

    async def stop(self) -> None:
        for queue in self._queues.values():
            await queue.stop()
        logger.info("Message router stopped", queues=len(self._queues))

    def get_stats(self) -> dict[str, Any]:
        """Get router statistics."""
        return {key: queue.get_stats() for key, queue in self._queues.items()}
