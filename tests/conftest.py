"""Shared fixtures and fakes."""

import copy
from typing import Any

import pytest

from housebot.channels.base import BaseChannel
from housebot.core.llm_client import BaseCompletionClient, CompletionResult, TextDelta, ToolUseStarted
from housebot.memory.conversation import ConversationStore
from housebot.skills.base import BaseSkill
from housebot.utils.config import get_settings


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Every test runs in its own directory with default settings."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOUSEBOT_CONFIG", str(tmp_path / "settings.yaml"))
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("GROUPME_BOT_ID", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def store(tmp_path):
    conversation_store = ConversationStore(db_url=f"sqlite+aiosqlite:///{tmp_path}/history.db")
    await conversation_store.initialize()
    yield conversation_store
    await conversation_store.close()


class FakeCompletionClient(BaseCompletionClient):
    """Replays scripted rounds and records every request."""

    def __init__(self, rounds=None, classify_answer: Any = "NO"):
        self.rounds = list(rounds or [])
        self.calls: list[dict[str, Any]] = []
        self.classify_answer = classify_answer
        self.prompts: list[str] = []

    async def stream(self, *, system, messages, tools, container_id=None):
        self.calls.append(
            {
                "system": system,
                "messages": copy.deepcopy(messages),
                "tools": tools,
                "container_id": container_id,
            }
        )
        if not self.rounds:
            raise AssertionError("Unexpected completion request")
        events = self.rounds.pop(0)
        if isinstance(events, Exception):
            raise events
        for event in events:
            yield event

    async def classify(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if isinstance(self.classify_answer, Exception):
            raise self.classify_answer
        return self.classify_answer


def text_round(text: str, stop_reason: str = "end_turn", container_id: str | None = None) -> list:
    events: list = [TextDelta(text)] if text else []
    content = [{"type": "text", "text": text}] if text else []
    events.append(CompletionResult(content=content, stop_reason=stop_reason, container_id=container_id))
    return events


def tool_round(*calls: tuple[str, str, dict], text: str = "") -> list:
    """A round that asks for tools; each call is (tool_use_id, name, input)."""
    events: list = [TextDelta(text)] if text else []
    content: list[dict[str, Any]] = [{"type": "text", "text": text}] if text else []
    for tool_id, name, tool_input in calls:
        content.append({"type": "tool_use", "id": tool_id, "name": name, "input": tool_input})
        events.append(ToolUseStarted(tool_id, name))
    events.append(CompletionResult(content=content, stop_reason="tool_use"))
    return events


class StubSkill(BaseSkill):
    """Skill whose tools record their calls and delegate to an optional handler."""

    name = "stub"
    tool_names: tuple[str, ...] = ("stub_tool",)

    def __init__(self, name=None, tool_names=None, handler=None):
        if name:
            self.name = name
        if tool_names is not None:
            self.tool_names = tuple(tool_names)
        self.handler = handler
        self.calls: list[tuple[str, dict]] = []
        super().__init__()

    def _register_tools(self) -> None:
        for tool in self.tool_names:
            self.register_tool(tool, f"The {tool} tool", {"value": {"type": "string"}})

    async def execute(self, tool_name, tool_input):
        self.calls.append((tool_name, tool_input))
        if self.handler is not None:
            return await self.handler(tool_name, tool_input)
        return {"ok": True, "tool": tool_name}


class FakeChannel(BaseChannel):
    """Channel that records what it sends."""

    def __init__(self, name="fake", max_message_length=4000, ack_text=None, allowed_senders=None, fail_sends=False):
        super().__init__(name, allowed_senders=allowed_senders)
        self.max_message_length = max_message_length
        self.ack_text = ack_text
        self.fail_sends = fail_sends
        self.sent: list[tuple[str, str]] = []

    async def start(self) -> None:
        self._connected = True

    async def stop(self) -> None:
        self._connected = False

    async def send_message(self, conversation_id: str, content: str) -> None:
        if self.fail_sends:
            raise RuntimeError("send failed")
        self.sent.append((conversation_id, content))

    async def receive(self, message) -> None:
        await self._dispatch_message(message)
