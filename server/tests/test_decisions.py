from __future__ import annotations

import json

from npcmind.sim.decisions import (
    AttackDecision,
    ChatDecision,
    FollowDecision,
    TradeDecision,
    parse_chat_reply,
    parse_decision,
)


def test_parse_each_action_shape():
    attack = parse_decision('{"action": "attack", "target_id": "wolf_1", "intent": "protect village"}')
    chat = parse_decision('{"action":"chat","target_id":"Bob","message":"Hello!","intent":"greet neighbor"}')
    trade = parse_decision(
        json.dumps(
            {
                "action": "trade",
                "target_id": "player",
                "give_items": [{"id": "bread", "count": 2}],
                "receive_items": [{"id": "wood", "count": 5}],
                "intent": "need wood",
            }
        )
    )
    follow = parse_decision('{"action": "follow", "target_id": "player", "intent": "escort"}')

    assert isinstance(attack, AttackDecision) and attack.target_id == "wolf_1"
    assert isinstance(chat, ChatDecision) and chat.message == "Hello!"
    assert isinstance(trade, TradeDecision) and trade.receive_items[0].count == 5
    assert isinstance(follow, FollowDecision) and follow.intent == "escort"


def test_parse_tolerates_fences_and_surrounding_text():
    fenced = '```json\n{"action": "follow", "target_id": "player", "intent": "escort"}\n```'
    chatter = 'Sure! {"action": "attack", "target_id": "tree_1", "intent": "gather wood"} done'

    assert isinstance(parse_decision(fenced), FollowDecision)
    assert isinstance(parse_decision(chatter), AttackDecision)


def test_parse_rejects_malformed_shapes():
    assert parse_decision(None) is None
    assert parse_decision("") is None
    assert parse_decision("not json at all") is None
    assert parse_decision('{"action": "dance", "target_id": "Bob", "intent": "fun"}') is None
    assert parse_decision('{"action": "attack", "intent": "no target"}') is None
    assert parse_decision('{"action": "chat", "target_id": "Bob", "intent": "no message"}') is None
    assert parse_decision('{"action": "trade", "target_id": "Bob", "give_items": [], "intent": "x"}') is None
    assert parse_decision('{"action": "follow", "target_id": "Bob", "intent": "x", "speed": 3}') is None
    assert parse_decision('{"action": "follow", "target_id": "   ", "intent": "x"}') is None
    assert parse_decision('["attack"]') is None


def test_intent_is_clipped_to_ten_words():
    raw = json.dumps(
        {"action": "follow", "target_id": "player", "intent": "one two three four five six seven eight nine ten eleven"}
    )

    decision = parse_decision(raw)

    assert decision.intent == "one two three four five six seven eight nine ten"


def test_parse_chat_reply():
    assert parse_chat_reply('{"response": "Good morning to you."}') == "Good morning to you."
    assert parse_chat_reply("Just plain words") == "Just plain words"
    assert parse_chat_reply('{"oops": ') is None
    assert parse_chat_reply("") is None
    assert parse_chat_reply(None) is None
    long_reply = " ".join(f"w{i}" for i in range(30))
    assert len(parse_chat_reply(json.dumps({"response": long_reply})).split()) == 20
