"""
HouseBot - Family Chat Assistant
Main Entry Point

This module wires up all components and runs the configured channels.
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env BEFORE any other imports that read os.environ or settings
load_dotenv(dotenv_path=Path(".") / ".env", override=False)

import structlog

from housebot.channels.base import BaseChannel
from housebot.channels.console import ConsoleChannel
from housebot.channels.groupme import GroupMeChannel
from housebot.core.assistant import Assistant
from housebot.core.gate import DirectedMessageGate
from housebot.core.llm_client import AnthropicClient
from housebot.core.message_router import MessageRouter
from housebot.core.orchestrator import Orchestrator
from housebot.errors import ConfigurationError
from housebot.memory.conversation import ConversationStore
from housebot.skills.builtin.tasks import TasksSkill
from housebot.skills.registry import SkillRegistry
from housebot.utils.config import get_settings, reload_settings
from housebot.utils.logging import get_audit_logger, setup_logging

logger = structlog.get_logger()

CHANNEL_CHOICES = ("console", "groupme", "all")


class HouseBotApplication:
    """Main HouseBot application that manages all components."""

    def __init__(self, channel_filter: str = "all"):
        self.settings = get_settings()
        self.channel_filter = channel_filter
        self.shutdown_event = asyncio.Event()

        self.conversation_store: Optional[ConversationStore] = None
        self.skill_registry: Optional[SkillRegistry] = None
        self.client: Optional[AnthropicClient] = None
        self.orchestrator: Optional[Orchestrator] = None
        self.gate: Optional[DirectedMessageGate] = None
        self.assistant: Optional[Assistant] = None
        self.channels: list[BaseChannel] = []
        self._watchers: list[asyncio.Task] = []

    async def initialize(self) -> None:
        """Initialize all components. Configuration problems surface here, before any channel starts."""
        logger.info("Initializing HouseBot...")
        api_key = self.settings.require_api_key()

        logger.info("Initializing conversation store...")
        self.conversation_store = ConversationStore()
        await self.conversation_store.initialize()

        logger.info("Initializing skill registry...")
        self.skill_registry = SkillRegistry()
        tasks_config = self.settings.skills.tasks
        if tasks_config.get("enabled", True):
            self.skill_registry.register(TasksSkill(tasks_config))
        await self.skill_registry.initialize_all()

        logger.info("Initializing completion loop...")
        self.client = AnthropicClient(api_key=api_key)
        self.orchestrator = Orchestrator(
            client=self.client,
            skill_registry=self.skill_registry,
            conversation_store=self.conversation_store,
            settings=self.settings,
            audit_logger=get_audit_logger(),
        )

        assistant_config = self.settings.assistant
        self.gate = DirectedMessageGate(
            client=self.client,
            assistant_name=assistant_config.name,
            aliases=assistant_config.aliases,
            platform_ids=assistant_config.platform_ids,
            buffer_size=self.settings.gate.buffer_size,
        )
        self.assistant = Assistant(self.orchestrator, self.gate, MessageRouter())

        logger.info("Initializing channels...")
        self._initialize_channels()
        if not self.channels:
            raise ConfigurationError("No channels enabled")
        for channel in self.channels:
            self.assistant.register_channel(channel)

        logger.info(
            "HouseBot initialization complete",
            channels=[c.name for c in self.channels],
            tools=[t.name for t in self.skill_registry.all_schemas()],
        )

    def _initialize_channels(self) -> None:
        """Create channels based on configuration and the --channel filter."""
        channels_config = self.settings.channels

        if self.channel_filter in ("console", "all") and channels_config.console.enabled:
            self.channels.append(ConsoleChannel())
            logger.info("Console channel created")

        if self.channel_filter in ("groupme", "all") and channels_config.groupme.enabled:
            self.channels.append(GroupMeChannel())
            logger.info(
                "GroupMe channel created",
                host=channels_config.groupme.host,
                port=channels_config.groupme.port,
            )

    async def start(self) -> None:
        """Start all channels and wait for shutdown."""
        logger.info("Starting HouseBot...")
        await self.assistant.start()

        for channel in self.channels:
            if isinstance(channel, ConsoleChannel):
                self._watchers.append(asyncio.create_task(self._shutdown_when_closed(channel)))

        logger.info("HouseBot is running")
        await self.shutdown_event.wait()
        logger.info("Shutting down HouseBot...")

    async def _shutdown_when_closed(self, channel: ConsoleChannel) -> None:
        await channel.closed.wait()
        # Let the reply to the last line finish before exiting
        await self.assistant.message_router.wait_idle()
        await self.shutdown()

    async def shutdown(self) -> None:
        """Signal the application to shut down."""
        self.shutdown_event.set()

    async def cleanup(self) -> None:
        """Stop channels and release resources."""
        for watcher in self._watchers:
            watcher.cancel()
        if self.assistant:
            await self.assistant.stop()
        if self.skill_registry:
            await self.skill_registry.shutdown_all()
        if self.conversation_store:
            await self.conversation_store.close()
        logger.info("HouseBot stopped")


async def main(channel_filter: str = "all") -> None:
    """Main entry point."""
    settings = get_settings()
    settings.ensure_directories()
    setup_logging()

    logger.info("HouseBot starting", assistant=settings.assistant.name, model=settings.llm.model)

    app = HouseBotApplication(channel_filter)

    loop = asyncio.get_running_loop()

    def signal_handler():
        asyncio.create_task(app.shutdown())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.initialize()
        await app.start()
    except ConfigurationError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)
    except Exception as e:
        logger.error("Fatal error", error=str(e), exc_info=True)
        sys.exit(1)
    finally:
        await app.cleanup()


def run():
    """Synchronous entry point with CLI argument parsing."""
    parser = argparse.ArgumentParser(
        prog="housebot",
        description="HouseBot - Family Chat Assistant",
    )
    parser.add_argument(
        "--config",
        default=None,
        metavar="PATH",
        help="Path to a settings YAML file",
    )
    parser.add_argument(
        "--channel",
        choices=CHANNEL_CHOICES,
        default="all",
        help="Run only one channel (default: every enabled channel)",
    )
    args = parser.parse_args()

    try:
        if args.config:
            reload_settings(args.config)
        else:
            get_settings()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    asyncio.run(main(args.channel))


if __name__ == "__main__":
    run()
