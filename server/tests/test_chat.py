from __future__ import annotations

import pytest

from npcmind.sim.chat import DEFAULT_REPLY, ERROR_REPLY, ChatResponder


def _responder(harness) -> ChatResponder:
    return ChatResponder(
        harness.oracle,
        harness.journal,
        harness.context.controllers,
        settings=harness.settings,
        spawner=harness.pending.append,
    )


@pytest.mark.asyncio
async def test_reply_is_logged_displayed_and_followed_up(harness):
    alice = harness.add_character("alice", name="Alice", persona="friendly farmer")
    bob = harness.add_character("Bob", x=3.0, persona="grumpy smith")
    alice_controller = harness.controller(alice)
    bob_controller = harness.controller(bob)
    harness.oracle.responses.append('{"response": "Morning, Alice."}')
    chat = _responder(harness)

    assert chat.deliver(alice, bob, "Hello!") is True
    await harness.drain()

    assert "grumpy smith" in harness.oracle.prompts[0]
    assert "Hello!" in harness.oracle.prompts[0]
    assert bob.display_text == "Morning, Alice."
    messages = [entry.message for entry in harness.journal.history]
    assert messages == ['Alice said "Hello!" to Bob.', 'Bob said "Morning, Alice." to Alice.']
    assert alice_controller.scheduler.follow_up_pending is True
    assert bob_controller.scheduler.follow_up_pending is True


@pytest.mark.asyncio
async def test_empty_reply_uses_default(harness):
    alice = harness.add_character("alice")
    bob = harness.add_character("Bob", x=3.0)
    harness.controller(bob)

    reply = await _responder(harness).respond(bob, alice, "Hi")

    assert reply == DEFAULT_REPLY
    assert bob.display_text == DEFAULT_REPLY


@pytest.mark.asyncio
async def test_oracle_failure_still_schedules_follow_ups(harness):
    alice = harness.add_character("alice")
    bob = harness.add_character("Bob", x=3.0)
    alice_controller = harness.controller(alice)
    bob_controller = harness.controller(bob)
    harness.oracle.responses.append(RuntimeError("connection reset"))

    reply = await _responder(harness).respond(bob, alice, "Hi")

    assert reply == ERROR_REPLY
    assert harness.journal.history[-1].kind == "chat_error"
    assert alice_controller.scheduler.follow_up_pending is True
    assert bob_controller.scheduler.follow_up_pending is True


def test_chat_to_player_or_dead_npc_is_only_logged(harness):
    alice = harness.add_character("alice")
    player = harness.add_character("player", x=2.0, is_player=True)
    bob = harness.add_character("Bob", x=3.0, dead=True)
    harness.controller(bob)
    chat = _responder(harness)

    assert chat.deliver(alice, player, "Nice day") is False
    assert chat.deliver(alice, bob, "Bob?") is False
    assert harness.pending == []
    assert len(harness.journal.history) == 2
