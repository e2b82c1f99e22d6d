"""Directed-message gate for group chats.

In a group, most traffic is people talking to each other. The gate decides
whether a message is meant for the assistant, cheapest check first:

1. The assistant's name or an alias appears as a whole word.
2. The platform's own mention metadata tags the assistant.
3. A small model reads the recent conversation and answers YES or NO.

Every admissible message is recorded in the channel's ring buffer before
the decision is made, so the classifier sees context for follow-ups even
when earlier messages were not for the assistant.
"""

import re
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

from ..utils.logging import get_logger

if TYPE_CHECKING:
    from ..channels.base import InboundMessage
    from .llm_client import BaseCompletionClient

logger = get_logger(__name__)

CLASSIFIER_PROMPT = """You are deciding whether {name} should respond to a message in a family group chat.
{name} is an assistant that manages shared lists (groceries, to-dos), calendars, reminders, and answers questions.

Recent messages (oldest first):
{history}

New message from {sender}: "{text}"

Answer YES if the new message is a request {name} can help with (adding to or reading a list, \
checking or changing the calendar, setting a reminder, looking something up) or a follow-up to something \
{name} recently said.
Answer NO if it is casual conversation, banter, or logistics between the people in the chat.

Answer with exactly one word: YES or NO."""


@dataclass(frozen=True)
class BufferedMessage:
    """One entry of a group's recent history."""

    sender: str
    text: str
    is_from_assistant: bool = False


class RecentMessageBuffer:
    """Fixed-capacity history of a group chat; the oldest entry falls off."""

    def __init__(self, capacity: int = 10) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._entries: deque[BufferedMessage] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def add(self, sender: str, text: str, is_from_assistant: bool = False) -> None:
        self._entries.append(BufferedMessage(sender=sender, text=text, is_from_assistant=is_from_assistant))

    def entries(self) -> list[BufferedMessage]:
        """Oldest first."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class DirectedMessageGate:
    """Decides whether a group message is addressed to the assistant."""

    def __init__(
        self,
        client: "BaseCompletionClient",
        assistant_name: str,
        aliases: Iterable[str] = (),
        platform_ids: Iterable[str] = (),
        buffer_size: int = 10,
    ) -> None:
        self.client = client
        self.assistant_name = assistant_name
        self.buffer_size = buffer_size
        self._platform_ids = {str(pid) for pid in platform_ids}
        self._buffers: dict[str, RecentMessageBuffer] = {}

        names = [assistant_name, *aliases]
        alternatives = "|".join(re.escape(n.strip()) for n in names if n.strip())
        # (?<!\w) / (?!\w) instead of \b so names ending in punctuation still match
        self._name_pattern = re.compile(rf"(?<!\w)(?:{alternatives})(?!\w)", re.IGNORECASE)

    def buffer_for(self, conversation_id: str) -> RecentMessageBuffer:
        """The ring buffer of one group, created on first use."""
        buffer = self._buffers.get(conversation_id)
        if buffer is None:
            buffer = RecentMessageBuffer(self.buffer_size)
            self._buffers[conversation_id] = buffer
        return buffer

    @staticmethod
    def is_admissible(message: "InboundMessage") -> bool:
        """Own messages and platform notices never enter the buffer or the queue."""
        return not (message.is_self or message.is_system)

    def record(self, message: "InboundMessage") -> None:
        """Remember a group message as classifier context."""
        self.buffer_for(message.conversation_id).add(message.sender_name, message.text)

    def record_reply(self, conversation_id: str, text: str) -> None:
        """Remember something the assistant said in a group."""
        self.buffer_for(conversation_id).add(self.assistant_name, text, is_from_assistant=True)

    def mentions_name(self, text: str) -> bool:
        return bool(self._name_pattern.search(text))

    def mentions_identity(self, message: "InboundMessage") -> bool:
        return any(str(mention) in self._platform_ids for mention in message.mentions)

    async def admit(self, message: "InboundMessage") -> bool:
        """
        Record a group message and decide whether it should be handled.

        Returns False for self-authored and system messages without
        recording them.
        """
        if not self.is_admissible(message):
            return False
        self.record(message)
        return await self.is_directed(message)

    async def is_directed(self, message: "InboundMessage") -> bool:
        """Apply the checks in priority order; the first hit wins."""
        if self.mentions_name(message.text):
            logger.debug("Directed by name", sender=message.sender_name)
            return True
        if self.mentions_identity(message):
            logger.debug("Directed by mention", sender=message.sender_name)
            return True
        return await self.classify(message)

    def build_prompt(self, message: "InboundMessage") -> str:
        """Classifier prompt with the group's recent history."""
        entries = self.buffer_for(message.conversation_id).entries()
        # The current message was recorded last; show it separately
        if entries and entries[-1] == BufferedMessage(message.sender_name, message.text):
            entries = entries[:-1]

        lines = []
        for entry in entries:
            if entry.is_from_assistant:
                lines.append(f"[{self.assistant_name} (assistant)]: {entry.text}")
            else:
                lines.append(f"{entry.sender}: {entry.text}")

        return CLASSIFIER_PROMPT.format(
            name=self.assistant_name,
            history="\n".join(lines) if lines else "(no earlier messages)",
            sender=message.sender_name,
            text=message.text,
        )

    async def classify(self, message: "InboundMessage") -> bool:
        """Ask the small model. Anything but a clear YES means no."""
        try:
            answer = await self.client.classify(self.build_prompt(message))
        except Exception as e:
            logger.warning("Directed-message classifier failed", error=str(e))
            return False

        verdict = answer.strip().upper().rstrip(".!")
        if verdict.startswith("YES"):
            directed = True
        elif verdict.startswith("NO"):
            directed = False
        else:
            logger.warning("Unexpected classifier answer", answer=answer[:50])
            directed = False

        logger.debug("Classifier verdict", sender=message.sender_name, directed=directed)
        return directed
