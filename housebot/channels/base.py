"""Base channel interface for messaging platforms."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Coroutine

from ..utils.logging import get_logger

logger = get_logger(__name__)


class ChannelKind(str, Enum):
    """Whether a conversation has one human or many."""

    DIRECT = "direct"
    GROUP = "group"


@dataclass
class InboundMessage:
    """A message received from a channel."""

    sender_id: str
    sender_name: str
    text: str
    channel_kind: ChannelKind = ChannelKind.DIRECT
    # Where replies go: the group id, or the sender for direct chats
    conversation_id: str = ""
    image_refs: list[str] = field(default_factory=list)
    # Platform user ids tagged in the message
    mentions: list[str] = field(default_factory=list)
    is_self: bool = False
    is_system: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    raw: Any = None  # Original payload from the platform

    def __post_init__(self) -> None:
        if not self.conversation_id:
            self.conversation_id = self.sender_id

    @property
    def is_group(self) -> bool:
        return self.channel_kind == ChannelKind.GROUP


# Type for message handler callbacks
MessageHandler = Callable[["BaseChannel", InboundMessage], Coroutine[Any, Any, None]]


class BaseChannel(ABC):
    """
    Abstract base class for messaging channels.

    A channel turns platform traffic into ``InboundMessage`` objects and
    sends plain-text replies back. Everything between those two points
    (gating, queueing, the model) is the assistant's business.
    """

    # Transport limits - override in subclasses
    max_message_length: int = 4000
    plain_text: bool = True
    # Sent right away on channels where silence looks like a lost message
    ack_text: str | None = None

    def __init__(self, name: str, allowed_senders: list[str] | None = None) -> None:
        """
        Initialize the channel.

        Args:
            name: Unique name for this channel
            allowed_senders: If non-empty, only these sender ids are accepted
        """
        self.name = name
        self._connected = False
        self._message_handlers: list[MessageHandler] = []
        self._allowed_senders = {s.strip() for s in allowed_senders or [] if s.strip()}

    @property
    def is_connected(self) -> bool:
        """Check if the channel is connected."""
        return self._connected

    def on_message(self, handler: MessageHandler) -> None:
        """
        Register a message handler.

        Args:
            handler: Async function to call when a message is received
        """
        self._message_handlers.append(handler)

    def is_allowed(self, sender_id: str) -> bool:
        return not self._allowed_senders or sender_id in self._allowed_senders

    async def _dispatch_message(self, message: InboundMessage) -> None:
        """
        Dispatch a message to all registered handlers.

        Args:
            message: The received message
        """
        if not self.is_allowed(message.sender_id):
            logger.debug("Ignoring message from non-allowlisted sender", channel=self.name, sender=message.sender_id)
            return

        if not self._message_handlers:
            logger.warning("No message handlers registered", channel=self.name, sender=message.sender_id)
            return

        for handler in self._message_handlers:
            try:
                await handler(self, message)
            except Exception as e:
                logger.error("Error in message handler", channel=self.name, error=str(e), exc_info=True)

    @abstractmethod
    async def start(self) -> None:
        """Start the channel and begin listening for messages."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop the channel and clean up resources."""
        pass

    @abstractmethod
    async def send_message(self, conversation_id: str, content: str) -> None:
        """
        Send one message.

        Args:
            conversation_id: Group or user to send to
            content: Text no longer than ``max_message_length``

        Raises:
            Exception: If the platform rejects the message
        """
        pass

    def create_listener(self, message: InboundMessage) -> Any:
        """
        Optional live-progress observer for a turn.

        Returns a ``TurnListener`` or None. Default is None: the reply is
        delivered only when complete.
        """
        return None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name} connected={self._connected}>"
