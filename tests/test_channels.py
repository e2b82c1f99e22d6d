"""Tests for the GroupMe and console channels."""

import asyncio
import json

import httpx
import pytest
from rich.console import Console

from conftest import FakeCompletionClient, text_round
from housebot.channels.base import ChannelKind, InboundMessage
from housebot.channels.console import ConsoleChannel
from housebot.channels.groupme import GROUPME_API_URL, GroupMeChannel, parse_payload
from housebot.core.assistant import Assistant
from housebot.core.gate import DirectedMessageGate
from housebot.core.orchestrator import Orchestrator
from housebot.skills.registry import SkillRegistry
from housebot.utils.config import Settings, get_settings
from housebot.utils.logging import AuditLogger


def payload(**overrides):
    data = {
        "id": "m1",
        "group_id": "family",
        "sender_id": "u1",
        "user_id": "u1",
        "name": "Alice",
        "sender_type": "user",
        "system": False,
        "text": "bowdy add eggs",
        "attachments": [],
    }
    data.update(overrides)
    return data


def test_parse_user_message():
    message = parse_payload(payload())
    assert message.sender_id == "u1"
    assert message.sender_name == "Alice"
    assert message.conversation_id == "family"
    assert message.channel_kind == ChannelKind.GROUP
    assert not message.is_self
    assert not message.is_system


def test_parse_marks_bot_and_system_messages():
    assert parse_payload(payload(sender_type="bot")).is_self
    assert parse_payload(payload(system=True)).is_system


def test_parse_attachments():
    message = parse_payload(
        payload(
            text="",
            attachments=[
                {"type": "image", "url": "https://i.groupme.com/abc.jpeg"},
                {"type": "mentions", "user_ids": ["42", 7], "loci": [[0, 5], [6, 3]]},
            ],
        )
    )
    assert message.image_refs == ["https://i.groupme.com/abc.jpeg"]
    assert message.mentions == ["42", "7"]


def test_parse_drops_empty_messages():
    assert parse_payload(payload(text="   ")) is None


@pytest.fixture
def groupme_env(monkeypatch):
    monkeypatch.setenv("GROUPME_BOT_ID", "bot-1")
    get_settings.cache_clear()


async def test_webhook_acknowledges_and_dispatches(groupme_env):
    channel = GroupMeChannel()
    received = []

    async def handler(ch, message):
        received.append(message)

    channel.on_message(handler)
    transport = httpx.ASGITransport(app=channel.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post("/", json=payload())
        bad = await client.post("/", content=b"not json", headers={"content-type": "application/json"})

    assert response.status_code == 200
    assert bad.status_code == 200
    await asyncio.gather(*list(channel._inflight))
    assert [m.text for m in received] == ["bowdy add eggs"]


async def test_send_posts_to_bot_api(groupme_env):
    requests = []

    def respond(request):
        requests.append(request)
        return httpx.Response(202)

    channel = GroupMeChannel(http_client=httpx.AsyncClient(transport=httpx.MockTransport(respond)))
    await channel.send_message("family", "Added eggs.")

    (request,) = requests
    assert str(request.url) == GROUPME_API_URL
    assert json.loads(request.content) == {"bot_id": "bot-1", "text": "Added eggs."}


async def test_send_raises_on_rejection(groupme_env):
    channel = GroupMeChannel(
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(400)))
    )
    with pytest.raises(RuntimeError, match="400"):
        await channel.send_message("family", "hello")


def test_groupme_requires_bot_id():
    with pytest.raises(ValueError):
        GroupMeChannel()


async def test_console_listener_streams_and_skips_reprint():
    console = Console(record=True, width=120)
    channel = ConsoleChannel(console=console)
    listener = channel.create_listener(None)

    await listener.on_text("Hello ")
    await listener.on_text("there")
    await listener.on_tool_use("add_task")
    await listener.on_complete("Hello there")
    await channel.send_message("console-user", "Hello there")

    output = console.export_text()
    assert output.count("Hello there") == 1
    assert "using add_task" in output


async def test_console_prints_unstreamed_replies():
    console = Console(record=True, width=120)
    channel = ConsoleChannel(console=console)

    await channel.send_message("console-user", "Sorry, something went wrong. Try again?")

    assert "Sorry, something went wrong. Try again?" in console.export_text()


async def test_console_shows_fallback_when_nothing_streamed(store, tmp_path):
    console = Console(record=True, width=120)
    channel = ConsoleChannel(console=console)
    client = FakeCompletionClient([text_round("")])
    orchestrator = Orchestrator(
        client=client,
        skill_registry=SkillRegistry(),
        conversation_store=store,
        settings=Settings(),
        audit_logger=AuditLogger(tmp_path / "audit.log"),
    )
    assistant = Assistant(orchestrator, DirectedMessageGate(client, assistant_name="Bowdy Bot"))
    assistant.register_channel(channel)

    await assistant.handle_inbound(channel, InboundMessage(sender_id="console-user", sender_name="console", text="hmm"))
    await assistant.message_router.wait_idle()

    assert "I'm not sure how to respond to that." in console.export_text()


async def test_console_prints_reply_that_differs_from_stream():
    console = Console(record=True, width=120)
    channel = ConsoleChannel(console=console)
    listener = channel.create_listener(None)

    await listener.on_text("Checking the list. ")
    await listener.on_tool_use("list_tasks")
    await listener.on_complete("I'm not sure how to respond to that.")
    await channel.send_message("console-user", "I'm not sure how to respond to that.")

    assert "I'm not sure how to respond to that." in console.export_text()
