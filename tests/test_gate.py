"""Tests for the group-chat directed-message gate."""

from conftest import FakeCompletionClient
from housebot.channels.base import ChannelKind, InboundMessage
from housebot.core.gate import DirectedMessageGate, RecentMessageBuffer


def group_message(text, sender="Alice", group="g1", **kwargs):
    return InboundMessage(
        sender_id=sender.lower(),
        sender_name=sender,
        text=text,
        channel_kind=ChannelKind.GROUP,
        conversation_id=group,
        **kwargs,
    )


def make_gate(classify_answer="NO", buffer_size=10, platform_ids=()):
    client = FakeCompletionClient(classify_answer=classify_answer)
    gate = DirectedMessageGate(
        client,
        assistant_name="Bowdy Bot",
        aliases=["bowdy"],
        platform_ids=platform_ids,
        buffer_size=buffer_size,
    )
    return gate, client


async def test_name_in_any_case_is_directed_without_classifier():
    gate, client = make_gate()

    assert await gate.admit(group_message("hey BOWDY, add eggs"))
    assert await gate.admit(group_message("Thanks bowdy bot!"))
    assert client.prompts == []


async def test_name_must_be_a_whole_word():
    gate, client = make_gate(classify_answer="NO")

    assert not await gate.admit(group_message("the bowdyish couch is comfy"))
    assert len(client.prompts) == 1


async def test_platform_mention_is_directed():
    gate, client = make_gate(platform_ids=["bot-42"])

    assert await gate.admit(group_message("can you check this", mentions=["bot-42"]))
    assert not await gate.admit(group_message("hi Carol", mentions=["carol-1"]))
    assert len(client.prompts) == 1


async def test_classifier_yes_admits():
    gate, _ = make_gate(classify_answer="YES")
    assert await gate.admit(group_message("do we need milk?"))


async def test_classifier_answers_are_parsed_strictly():
    gate, client = make_gate()

    for answer, expected in [(" yes.", True), ("No", False), ("maybe", False), ("", False)]:
        client.classify_answer = answer
        assert await gate.admit(group_message("what's for dinner")) is expected


async def test_classifier_failure_means_not_directed():
    gate, _ = make_gate(classify_answer=RuntimeError("rate limited"))
    assert not await gate.admit(group_message("add bread to the list"))


async def test_own_and_system_messages_are_never_recorded():
    gate, client = make_gate(classify_answer="YES")

    assert not await gate.admit(group_message("Added eggs.", sender="Bowdy Bot", is_self=True))
    assert not await gate.admit(group_message("Alice joined the group", sender="GroupMe", is_system=True))
    assert len(gate.buffer_for("g1")) == 0
    assert client.prompts == []


async def test_undirected_messages_still_provide_context():
    gate, client = make_gate()

    await gate.admit(group_message("we're out of coffee", sender="Alice"))
    gate.record_reply("g1", "Want me to add coffee to the grocery list?")
    await gate.admit(group_message("yes please", sender="Bob"))

    prompt = client.prompts[-1]
    assert "Alice: we're out of coffee" in prompt
    assert "[Bowdy Bot (assistant)]: Want me to add coffee to the grocery list?" in prompt
    assert 'New message from Bob: "yes please"' in prompt
    # The message being classified is not repeated in the history section
    assert "Bob: yes please" not in prompt


async def test_buffers_are_per_group():
    gate, _ = make_gate()

    await gate.admit(group_message("hello from one", group="g1"))
    await gate.admit(group_message("hello from two", group="g2"))

    assert [e.text for e in gate.buffer_for("g1").entries()] == ["hello from one"]
    assert [e.text for e in gate.buffer_for("g2").entries()] == ["hello from two"]


def test_ring_buffer_evicts_oldest():
    buffer = RecentMessageBuffer(capacity=3)
    for i in range(5):
        buffer.add("Alice", f"m{i}")

    assert len(buffer) == 3
    assert [e.text for e in buffer.entries()] == ["m2", "m3", "m4"]


async def test_gate_buffer_holds_ten_by_default():
    gate, _ = make_gate()
    for i in range(12):
        await gate.admit(group_message(f"bowdy {i}"))

    entries = gate.buffer_for("g1").entries()
    assert len(entries) == 10
    assert entries[0].text == "bowdy 2"
