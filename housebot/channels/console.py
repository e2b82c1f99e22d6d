"""Interactive terminal channel for local use."""

import asyncio

from rich.console import Console

from ..core.orchestrator import TurnListener
from ..utils.config import get_settings
from ..utils.logging import get_logger
from .base import BaseChannel, ChannelKind, InboundMessage

logger = get_logger(__name__)


class ConsoleListener(TurnListener):
    """Prints the reply as it streams in."""

    def __init__(self, channel: "ConsoleChannel") -> None:
        self._channel = channel
        self._streamed: list[str] = []

    async def on_text(self, text: str) -> None:
        self._streamed.append(text)
        self._channel.console.print(text, end="", markup=False, highlight=False)

    async def on_tool_use(self, tool_name: str) -> None:
        self._channel.console.print(f"\n[dim]using {tool_name}...[/dim]")

    async def on_complete(self, text: str) -> None:
        # A fallback or otherwise unstreamed answer still has to be printed
        shown = "".join(self._streamed)
        self._channel._streamed_reply = bool(text.strip()) and text.strip() in shown


class ConsoleChannel(BaseChannel):
    """One user typing at a terminal. Replies stream as they are generated."""

    max_message_length = 100_000
    plain_text = False

    def __init__(self, console: Console | None = None) -> None:
        super().__init__("console")
        config = get_settings().channels.console
        self.user_id = config.user_id
        self.user_name = config.user_name
        self.console = console or Console()
        self._read_task: asyncio.Task[None] | None = None
        self._replied = asyncio.Event()
        self._streamed_reply = False
        self._closed = asyncio.Event()

    @property
    def closed(self) -> asyncio.Event:
        """Set when the user ends the session (Ctrl+D)."""
        return self._closed

    async def start(self) -> None:
        if self._connected:
            return
        self._connected = True
        self._read_task = asyncio.create_task(self._read_loop())
        logger.info("Console channel started")

    async def stop(self) -> None:
        if not self._connected:
            return
        self._connected = False
        if self._read_task:
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass
        logger.info("Console channel stopped")

    async def _read_loop(self) -> None:
        self.console.print("Type your messages (Ctrl+D to quit).")
        while self._connected:
            try:
                line = await asyncio.to_thread(self.console.input, "\n> ")
            except EOFError:
                self._closed.set()
                break

            text = line.strip()
            if not text:
                continue

            self._replied.clear()
            await self._dispatch_message(
                InboundMessage(
                    sender_id=self.user_id,
                    sender_name=self.user_name,
                    text=text,
                    channel_kind=ChannelKind.DIRECT,
                )
            )
            # Keep the prompt from interleaving with the streamed reply
            if self._message_handlers:
                await self._replied.wait()

    async def send_message(self, conversation_id: str, content: str) -> None:
        if self._streamed_reply:
            self.console.print()
            self._streamed_reply = False
        else:
            self.console.print(f"\n{content}", markup=False, highlight=False)
        self._replied.set()

    def create_listener(self, message: InboundMessage) -> ConsoleListener:
        return ConsoleListener(self)
