"""Completion loop - drives one inbound message through the model and its tools."""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable
from zoneinfo import ZoneInfo

import orjson

from ..errors import ToolExecutionError, UnknownToolError
from ..utils.config import Settings, get_settings
from ..utils.logging import AuditLogger, get_audit_logger, get_logger
from .llm_client import BaseCompletionClient, CompletionResult, StopReason, TextDelta, ToolUseStarted

if TYPE_CHECKING:
    from ..memory.conversation import ConversationStore
    from ..skills.registry import SkillRegistry

logger = get_logger(__name__)


class TurnListener:
    """
    Observer for live progress of a turn.

    Channels that can show partial output (the console) override the hooks
    they care about; the defaults do nothing. Hooks are awaited in event
    order, so a slow listener slows the turn rather than reordering it.
    """

    async def on_text(self, text: str) -> None:
        """A fragment of assistant text arrived."""

    async def on_tool_use(self, tool_name: str) -> None:
        """The model started using a tool."""

    async def on_complete(self, text: str) -> None:
        """The turn finished with this final text."""


@dataclass
class TurnRequest:
    """One inbound message, as the completion loop sees it."""

    user_id: str
    user_name: str
    text: str
    image_refs: list[str] = field(default_factory=list)
    channel: str = ""
    plain_text: bool = True


@dataclass
class TurnContext:
    """Ephemeral state of a single turn. Discarded when the turn ends."""

    messages: list[dict[str, Any]]
    container_id: str | None = None
    rounds: int = 0
    answer_parts: list[str] = field(default_factory=list)

    @property
    def answer(self) -> str:
        return "".join(self.answer_parts).strip()


class Orchestrator:
    """
    Runs the multi-round exchange with the completion service.

    Per inbound message: request, stream, then either execute the requested
    tools and ask again, resume a paused server-side operation with the same
    container, or finish. The final answer is persisted together with the
    user's message and returned.
    """

    def __init__(
        self,
        client: BaseCompletionClient,
        skill_registry: "SkillRegistry",
        conversation_store: "ConversationStore",
        settings: Settings | None = None,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.client = client
        self.skill_registry = skill_registry
        self.conversation_store = conversation_store
        self._audit_logger = audit_logger
        self._tz = ZoneInfo(self.settings.assistant.timezone)
        self._clock = clock or (lambda: datetime.now(self._tz))

    @property
    def audit_logger(self) -> AuditLogger:
        if self._audit_logger is None:
            self._audit_logger = get_audit_logger()
        return self._audit_logger

    def build_system_prompt(self, request: TurnRequest) -> str:
        """Persona, today's date, formatting rules, and who is talking."""
        assistant = self.settings.assistant
        now = self._clock().astimezone(self._tz)
        today = f"{now:%A, %B} {now.day}, {now:%Y}"

        if request.plain_text:
            formatting = (
                "Your replies are shown as plain text. Do not use markdown: no asterisks, "
                "headers, tables, or code fences. Use simple dashes for lists."
            )
        else:
            formatting = "Your replies can use light markdown."

        return (
            f"You are {assistant.name}. {assistant.persona}\n"
            "When the user asks you to do something actionable (add a task, check the calendar, etc.), "
            "use the available tools. For general conversation, just respond naturally.\n\n"
            f"Today is {today} ({assistant.timezone}).\n"
            f"{formatting}\n"
            f"You are talking to {request.user_name}."
        )

    @staticmethod
    def build_user_content(request: TurnRequest) -> str | list[dict[str, Any]]:
        """Message text, plus image blocks when the message carries pictures."""
        if not request.image_refs:
            return request.text
        content: list[dict[str, Any]] = [
            {"type": "image", "source": {"type": "url", "url": ref}} for ref in request.image_refs
        ]
        if request.text:
            content.append({"type": "text", "text": request.text})
        return content

    async def handle(self, request: TurnRequest, listener: TurnListener | None = None) -> str:
        """
        Process one inbound message to completion.

        Args:
            request: The inbound message
            listener: Optional observer for streamed text and tool activity

        Returns:
            The final reply text (never empty)

        Raises:
            PersistenceError: If history cannot be read or written
            Exception: Completion service failures propagate unchanged
        """
        listener = listener or TurnListener()
        max_rounds = self.settings.orchestrator.max_rounds

        history = await self.conversation_store.recent(request.user_id)
        context = TurnContext(
            messages=[m.to_llm() for m in history]
            + [{"role": "user", "content": self.build_user_content(request)}],
        )
        system = self.build_system_prompt(request)
        tools = self.skill_registry.to_api()

        logger.info(
            "Turn started",
            user=request.user_name,
            channel=request.channel,
            history=len(history),
            images=len(request.image_refs),
        )

        while True:
            if context.rounds >= max_rounds:
                logger.warning("Round limit reached, finishing turn", rounds=context.rounds, user_id=request.user_id)
                break

            result = await self._run_round(context, system, tools, listener)

            if result.stop_reason == StopReason.TOOL_USE and result.tool_uses:
                context.messages.append({"role": "assistant", "content": result.content})
                tool_results = await self._execute_tools(result.tool_uses, request)
                context.messages.append({"role": "user", "content": tool_results})
                continue

            if result.stop_reason == StopReason.PAUSE_TURN:
                context.messages.append({"role": "assistant", "content": result.content})
                context.answer_parts.append(result.text)
                if result.container_id:
                    context.container_id = result.container_id
                logger.debug("Turn paused, resuming", container_id=context.container_id)
                continue

            context.answer_parts.append(result.text)
            break

        final_text = context.answer or self.settings.assistant.fallback_reply

        await self.conversation_store.append(request.user_id, "user", request.text)
        await self.conversation_store.append(request.user_id, "assistant", final_text)

        await listener.on_complete(final_text)
        logger.info("Turn completed", user_id=request.user_id, rounds=context.rounds, reply_chars=len(final_text))
        return final_text

    async def _run_round(
        self,
        context: TurnContext,
        system: str,
        tools: list[dict[str, Any]],
        listener: TurnListener,
    ) -> CompletionResult:
        """Send one request and relay its stream to the listener."""
        context.rounds += 1
        result: CompletionResult | None = None

        async for event in self.client.stream(
            system=system,
            messages=context.messages,
            tools=tools,
            container_id=context.container_id,
        ):
            if isinstance(event, TextDelta):
                await listener.on_text(event.text)
            elif isinstance(event, ToolUseStarted):
                await listener.on_tool_use(event.name)
            elif isinstance(event, CompletionResult):
                result = event

        if result is None:
            raise RuntimeError("Completion stream ended without a result")

        if result.container_id:
            context.container_id = result.container_id

        logger.debug(
            "Completion round finished",
            round=context.rounds,
            stop_reason=result.stop_reason,
            tool_calls=len(result.tool_uses),
            **result.usage,
        )
        return result

    async def _execute_tools(self, tool_uses: list[dict[str, Any]], request: TurnRequest) -> list[dict[str, Any]]:
        """Run the requested tools one after another, keeping request order."""
        results = []
        for tool_use in tool_uses:
            results.append(await self._execute_tool(tool_use, request))
        return results

    async def _execute_tool(self, tool_use: dict[str, Any], request: TurnRequest) -> dict[str, Any]:
        """Run one tool and wrap the outcome as a tool_result block."""
        tool_name = tool_use.get("name", "")
        tool_input = tool_use.get("input") or {}
        tool_id = tool_use.get("id", "")
        timeout = self.settings.orchestrator.tool_timeout_seconds

        logger.info("Executing tool", tool=tool_name, input=tool_input)
        self.audit_logger.tool_requested(tool_name, tool_input, user_id=request.user_id, channel=request.channel)

        deadline = asyncio.timeout(timeout) if timeout and timeout > 0 else None
        start = time.monotonic()
        try:
            try:
                if deadline is None:
                    output = await self.skill_registry.invoke(tool_name, tool_input)
                else:
                    async with deadline:
                        output = await self.skill_registry.invoke(tool_name, tool_input)
            except TimeoutError as e:
                # Only our own deadline counts as a timeout; a tool's TimeoutError is an ordinary failure
                if deadline is None or not deadline.expired():
                    raise
                raise ToolExecutionError(tool_name, f"Tool timed out after {timeout:g}s") from e
        except Exception as e:
            error = str(e) if isinstance(e, UnknownToolError) else f"{type(e).__name__}: {e}"
            logger.error("Tool execution failed", tool=tool_name, error=error)
            self.audit_logger.tool_failed(tool_name, error, user_id=request.user_id, channel=request.channel)
            return {
                "type": "tool_result",
                "tool_use_id": tool_id,
                "content": orjson.dumps({"error": error}).decode(),
                "is_error": True,
            }

        duration_ms = (time.monotonic() - start) * 1000
        self.audit_logger.tool_executed(tool_name, duration_ms, user_id=request.user_id, channel=request.channel)
        return {
            "type": "tool_result",
            "tool_use_id": tool_id,
            "content": orjson.dumps(output, default=str).decode(),
        }
