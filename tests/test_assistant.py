"""End-to-end tests of the inbound pipeline with a fake channel."""

import pytest

from conftest import FakeChannel, FakeCompletionClient, text_round
from housebot.channels.base import ChannelKind, InboundMessage
from housebot.core.assistant import Assistant
from housebot.core.gate import DirectedMessageGate
from housebot.core.orchestrator import Orchestrator
from housebot.errors import PersistenceError
from housebot.memory.conversation import ConversationStore
from housebot.skills.registry import SkillRegistry
from housebot.utils.config import Settings
from housebot.utils.logging import AuditLogger


@pytest.fixture
def build(store, tmp_path):
    def _build(rounds, classify_answer="NO", channel=None, conversation_store=None):
        client = FakeCompletionClient(rounds, classify_answer=classify_answer)
        orchestrator = Orchestrator(
            client=client,
            skill_registry=SkillRegistry(),
            conversation_store=conversation_store or store,
            settings=Settings(),
            audit_logger=AuditLogger(tmp_path / "audit.log"),
        )
        gate = DirectedMessageGate(client, assistant_name="Bowdy Bot", aliases=["bowdy"])
        assistant = Assistant(orchestrator, gate)
        channel = channel or FakeChannel()
        assistant.register_channel(channel)
        return assistant, channel, client

    return _build


def direct(text, sender="alice"):
    return InboundMessage(sender_id=sender, sender_name=sender.title(), text=text)


def group(text, sender="Alice", **kwargs):
    return InboundMessage(
        sender_id=sender.lower(),
        sender_name=sender,
        text=text,
        channel_kind=ChannelKind.GROUP,
        conversation_id="family",
        **kwargs,
    )


async def test_direct_message_gets_reply(build, store):
    assistant, channel, _ = build([text_round("Hi Alice!")])

    await channel.receive(direct("hello"))
    await assistant.message_router.wait_idle()

    assert channel.sent == [("alice", "Hi Alice!")]
    assert [m.text for m in await store.recent("alice")] == ["hello", "Hi Alice!"]


async def test_direct_messages_are_answered_in_order(build):
    assistant, channel, _ = build([text_round("first"), text_round("second")])

    await channel.receive(direct("one"))
    await channel.receive(direct("two"))
    await assistant.message_router.wait_idle()

    assert [text for _, text in channel.sent] == ["first", "second"]


async def test_group_chatter_is_ignored_but_remembered(build):
    assistant, channel, client = build([], classify_answer="NO")

    await channel.receive(group("running late, see you at 6"))
    await assistant.message_router.wait_idle()

    assert channel.sent == []
    assert client.calls == []
    assert [e.text for e in assistant.gate.buffer_for("family").entries()] == ["running late, see you at 6"]


async def test_group_reply_is_recorded_for_context(build):
    assistant, channel, client = build([text_round("Added eggs.")])

    await channel.receive(group("bowdy add eggs"))
    await assistant.message_router.wait_idle()

    assert channel.sent == [("family", "Added eggs.")]
    last = assistant.gate.buffer_for("family").entries()[-1]
    assert last.text == "Added eggs."
    assert last.is_from_assistant
    assert client.prompts == []


async def test_own_messages_are_dropped(build):
    assistant, channel, client = build([], classify_answer="YES")

    await channel.receive(group("Added eggs.", sender="Bowdy Bot", is_self=True))
    await assistant.message_router.wait_idle()

    assert channel.sent == []
    assert client.calls == []


async def test_allowlist_blocks_unknown_senders(build):
    assistant, channel, client = build([], channel=FakeChannel(allowed_senders=["bob"]))

    await channel.receive(direct("hello", sender="mallory"))
    await assistant.message_router.wait_idle()

    assert channel.sent == []
    assert client.calls == []


async def test_model_failure_sends_apology(build, store):
    assistant, channel, _ = build([RuntimeError("overloaded")])

    await channel.receive(direct("hello"))
    await assistant.message_router.wait_idle()

    assert channel.sent == [("alice", "Sorry, something went wrong. Try again?")]
    assert await store.recent("alice") == []


async def test_ack_is_sent_before_reply(build):
    assistant, channel, _ = build([text_round("Done.")], channel=FakeChannel(ack_text="Thinking..."))

    await channel.receive(direct("hello"))
    await assistant.message_router.wait_idle()

    assert [text for _, text in channel.sent] == ["Thinking...", "Done."]


class BrokenDiskStore(ConversationStore):
    """Fails to save any message mentioning the shed."""

    async def append(self, user_id, role, text):
        if "shed" in text:
            raise PersistenceError("disk full")
        return await super().append(user_id, role, text)


async def test_history_write_failure_gets_apology_and_queue_continues(build, tmp_path):
    broken = BrokenDiskStore(db_url=f"sqlite+aiosqlite:///{tmp_path}/broken.db")
    assistant, channel, _ = build(
        [text_round("The key is under the mat."), text_round("Dinner is at 6.")],
        conversation_store=broken,
    )

    await channel.receive(direct("where is the shed key?"))
    await channel.receive(direct("when is dinner?"))
    await assistant.message_router.wait_idle()

    assert [text for _, text in channel.sent] == ["Sorry, something went wrong. Try again?", "Dinner is at 6."]
    assert [m.text for m in await broken.recent("alice")] == ["when is dinner?", "Dinner is at 6."]
    await broken.close()
