"""Routes channel traffic through the gate and delivery queues to the completion loop."""

from typing import TYPE_CHECKING

from ..utils.logging import get_logger
from .message_router import DeliveryQueue, MessageRouter, QueuedMessage
from .orchestrator import Orchestrator, TurnRequest

if TYPE_CHECKING:
    from ..channels.base import BaseChannel, InboundMessage
    from .gate import DirectedMessageGate

logger = get_logger(__name__)


class Assistant:
    """
    Entry point for every inbound message.

    Direct chats go straight to the conversation's queue. Group messages
    are recorded and gated first, and the assistant's own replies are fed
    back into the group's history.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        gate: "DirectedMessageGate",
        message_router: MessageRouter | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.gate = gate
        self.message_router = message_router or MessageRouter()
        self._channels: dict[str, "BaseChannel"] = {}

    def register_channel(self, channel: "BaseChannel") -> None:
        """Subscribe to a channel's inbound messages."""
        self._channels[channel.name] = channel
        channel.on_message(self.handle_inbound)
        logger.info("Registered channel", channel=channel.name)

    @property
    def channels(self) -> list["BaseChannel"]:
        return list(self._channels.values())

    async def handle_inbound(self, channel: "BaseChannel", message: "InboundMessage") -> QueuedMessage | None:
        """
        Gate and enqueue one message.

        Returns the queued entry, or None when the message was dropped.
        """
        if not self.gate.is_admissible(message):
            return None

        if message.is_group:
            if not await self.gate.admit(message):
                logger.debug("Group message not directed at assistant", channel=channel.name, sender=message.sender_name)
                return None

        if not message.text.strip() and not message.image_refs:
            return None

        logger.info("Message accepted", channel=channel.name, sender=message.sender_name, group=message.is_group)
        entry = QueuedMessage(
            sender_id=message.sender_id,
            sender_name=message.sender_name,
            text=message.text.strip(),
            image_refs=list(message.image_refs),
            source=message,
        )
        return self._queue_for(channel, message).enqueue(entry)

    def _queue_for(self, channel: "BaseChannel", message: "InboundMessage") -> DeliveryQueue:
        conversation_id = message.conversation_id
        is_group = message.is_group

        async def process(entry: QueuedMessage) -> str:
            request = TurnRequest(
                user_id=entry.sender_id,
                user_name=entry.sender_name,
                text=entry.text,
                image_refs=entry.image_refs,
                channel=channel.name,
                plain_text=channel.plain_text,
            )
            listener = channel.create_listener(entry.source) if entry.source is not None else None
            return await self.orchestrator.handle(request, listener)

        async def send(text: str) -> None:
            await channel.send_message(conversation_id, text)
            if is_group:
                self.gate.record_reply(conversation_id, text)

        return self.message_router.queue_for(
            f"{channel.name}:{conversation_id}",
            process=process,
            send=send,
            max_message_length=channel.max_message_length,
            ack_text=channel.ack_text,
        )

    async def start(self) -> None:
        for channel in self._channels.values():
            await channel.start()

    async def stop(self) -> None:
        for channel in self._channels.values():
            try:
                await channel.stop()
            except Exception as e:
                logger.error("Channel stop failed", channel=channel.name, error=str(e))
        await self.message_router.stop()
