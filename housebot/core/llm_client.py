"""Completion service client (Anthropic Messages API)."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Union

from ..utils.config import get_settings
from ..utils.logging import get_logger

logger = get_logger(__name__)


class StopReason(str, Enum):
    """Stop reasons the completion loop branches on."""

    TOOL_USE = "tool_use"
    PAUSE_TURN = "pause_turn"
    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"


@dataclass
class TextDelta:
    """A fragment of assistant text, emitted as soon as it arrives."""

    text: str


@dataclass
class ToolUseStarted:
    """The model started a tool invocation block."""

    tool_id: str
    name: str
    server_side: bool = False


@dataclass
class CompletionResult:
    """Final state of one streamed completion request."""

    content: list[dict[str, Any]]
    stop_reason: str | None
    container_id: str | None = None
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return "".join(block.get("text", "") for block in self.content if block.get("type") == "text")

    @property
    def tool_uses(self) -> list[dict[str, Any]]:
        """Tool invocations the caller must execute locally, in request order."""
        return [block for block in self.content if block.get("type") == "tool_use"]


StreamEvent = Union[TextDelta, ToolUseStarted, CompletionResult]


class BaseCompletionClient(ABC):
    """Abstract completion service."""

    @abstractmethod
    def stream(
        self,
        *,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        container_id: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream one completion request.

        Yields ``TextDelta`` and ``ToolUseStarted`` events as they arrive and
        exactly one ``CompletionResult`` last.
        """

    @abstractmethod
    async def classify(self, prompt: str) -> str:
        """Run a short, low-cost completion and return its raw text."""


class AnthropicClient(BaseCompletionClient):
    """Client for Anthropic Claude models."""

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        classifier_model: str | None = None,
        max_tokens: int | None = None,
        classifier_max_tokens: int | None = None,
        timeout: int | None = None,
    ) -> None:
        llm = get_settings().llm
        self.api_key = api_key
        self.model = model or llm.model
        self.classifier_model = classifier_model or llm.classifier_model
        self.max_tokens = max_tokens or llm.max_tokens
        self.classifier_max_tokens = classifier_max_tokens or llm.classifier_max_tokens
        self.timeout = timeout or llm.timeout
        self._client: Any = None

    def _get_client(self) -> Any:
        """Get or create the Anthropic client."""
        if self._client is None:
            import anthropic

            # Retries are disabled: a replayed request could repeat tool side effects
            self._client = anthropic.AsyncAnthropic(
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def stream(
        self,
        *,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        container_id: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream a response from Claude."""
        client = self._get_client()

        create_kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system,
            "messages": messages,
        }
        if tools:
            create_kwargs["tools"] = tools
        if container_id:
            create_kwargs["extra_body"] = {"container": container_id}

        try:
            async with client.messages.stream(**create_kwargs) as stream:
                async for event in stream:
                    if event.type == "text":
                        yield TextDelta(text=event.text)
                    elif event.type == "content_block_start":
                        block = event.content_block
                        if block.type in ("tool_use", "server_tool_use"):
                            yield ToolUseStarted(
                                tool_id=block.id,
                                name=block.name,
                                server_side=block.type == "server_tool_use",
                            )
                message = await stream.get_final_message()
        except Exception as e:
            logger.error("Anthropic streaming failed", error=str(e))
            raise

        container = getattr(message, "container", None)
        yield CompletionResult(
            content=[block.model_dump(mode="json", exclude_none=True) for block in message.content],
            stop_reason=message.stop_reason,
            container_id=getattr(container, "id", None),
            usage={
                "prompt_tokens": message.usage.input_tokens,
                "completion_tokens": message.usage.output_tokens,
            },
        )

    async def classify(self, prompt: str) -> str:
        """Ask the cheap model a one-word question."""
        client = self._get_client()
        response = await client.messages.create(
            model=self.classifier_model,
            max_tokens=self.classifier_max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(block.text for block in response.content if block.type == "text")
