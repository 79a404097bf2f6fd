from __future__ import annotations

from collections.abc import Sequence

from npcmind.agents.agent import InventoryItem
from npcmind.memory.event_log import EventEntry
from npcmind.sim.decisions import MAX_CHAT_REPLY_WORDS, MAX_INTENT_WORDS
from npcmind.sim.observation import Observation, ObjectView, Point


LANGUAGE_NAMES = {
    "en": "English",
    "ru": "Russian",
    "de": "German",
    "fr": "French",
    "es": "Spanish",
    "it": "Italian",
    "pt": "Portuguese",
    "ja": "Japanese",
    "ko": "Korean",
    "zh": "Chinese",
    "uk": "Ukrainian",
    "pl": "Polish",
}


def language_name(locale: str) -> str:
    code = (locale or "en").strip().lower().replace("_", "-").split("-")[0]
    return LANGUAGE_NAMES.get(code, locale or "English")


def _fmt_point(point: Point) -> str:
    return f"({point[0]:.1f}, {point[1]:.1f}, {point[2]:.1f})"


def render_inventory(items: Sequence[InventoryItem | None]) -> str:
    rendered = [f"{item.id} ({item.count})" for item in items if item is not None]
    return ", ".join(rendered) if rendered else "Empty"


def limit_objects_per_type(objects: Sequence[ObjectView], per_type: int) -> list[ObjectView]:
    counts: dict[str, int] = {}
    limited: list[ObjectView] = []
    for obj in objects:
        seen = counts.get(obj.type, 0)
        if seen >= per_type:
            continue
        counts[obj.type] = seen + 1
        limited.append(obj)
    return limited


def render_events(events: Sequence[EventEntry]) -> str:
    if not events:
        return "None"
    return "\n".join(entry.to_prompt_line() for entry in events)


def _decision_contract(locale: str) -> str:
    language = language_name(locale)
    return (
        "Respond ONLY with exactly one JSON object, no markdown, no extra text. "
        "It must match one of these shapes:\n"
        '{"action": "attack", "target_id": "id", "intent": "reason"}\n'
        '{"action": "chat", "target_id": "id", "message": "what you say", "intent": "reason"}\n'
        '{"action": "trade", "target_id": "id", "give_items": [{"id": "item", "count": 1}], '
        '"receive_items": [{"id": "item", "count": 1}], "intent": "reason"}\n'
        '{"action": "follow", "target_id": "id", "intent": "reason"}\n'
        f"target_id must be an id from the lists above. intent must be less than {MAX_INTENT_WORDS} words. "
        f"Write message and intent in {language}."
    )


def build_decision_prompt(
    *,
    name: str,
    agent_id: str,
    persona: str,
    observation: Observation | None,
    events: Sequence[EventEntry],
    max_health: float,
    current_intent: str = "",
    locale: str = "en",
    objects_per_type: int = 3,
) -> str:
    if observation is not None:
        me = observation.self_state
        self_state = (
            f"- Health: {me.health:g}/{max_health:g}\n"
            f"- Current action: {me.current_action}\n"
            f"- Position: {_fmt_point(me.position)}\n"
            f"- Intent: {current_intent or 'None'}\n"
            f"- Inventory: {render_inventory(me.inventory)}"
        )
        characters = (
            "\n".join(
                f"- {c.name} ({c.id}) at {_fmt_point(c.position)}, health: {c.health:g}, "
                f"{'dead' if c.dead else 'alive'}, action: {c.current_action}"
                for c in observation.nearby_characters
            )
            or "None"
        )
        animals = (
            "\n".join(
                f"- {a.type} ({a.id}) at {_fmt_point(a.position)}, {'dead' if a.dead else 'alive'}, "
                f"{'aggressive' if a.aggressive else 'passive'}, action: {a.current_action}"
                for a in observation.nearby_animals
            )
            or "None"
        )
        objects = (
            "\n".join(
                f"- {o.type} ({o.id}) at {_fmt_point(o.position)}"
                + (f", resource: {o.resource}" if o.resource else "")
                for o in limit_objects_per_type(observation.nearby_objects, objects_per_type)
            )
            or "None"
        )
    else:
        self_state = "Unknown"
        characters = animals = objects = "None"

    return (
        f"You are controlling an NPC named {name} ({agent_id}) in a game. Here is your persona:\n"
        f"{persona or 'A generic villager.'}\n"
        "\n"
        "Your current state:\n"
        f"{self_state}\n"
        "\n"
        "Nearby characters:\n"
        f"{characters}\n"
        "\n"
        "Nearby animals:\n"
        f"{animals}\n"
        "\n"
        "Nearby objects:\n"
        f"{objects}\n"
        "\n"
        "Recent events you are aware of:\n"
        f"{render_events(events)}\n"
        "\n"
        "Based on this information, decide your next action. If the player told you to do something, "
        "do not ask for clarification, just do it. "
        "To gather a resource or hunt an animal, attack it.\n"
        f"{_decision_contract(locale)}"
    )


def build_chat_prompt(
    *,
    responder_name: str,
    responder_persona: str,
    speaker_name: str,
    message: str,
    events: Sequence[EventEntry],
    locale: str = "en",
) -> str:
    recent = "\n".join(entry.message for entry in events) or "Nothing significant recently."
    return (
        f"You are an NPC named {responder_name} with the following persona: "
        f"{responder_persona or 'a friendly villager'}\n"
        f'The character named {speaker_name} just said to you: "{message}"\n'
        "\n"
        "Recent events observed by you:\n"
        f"{recent}\n"
        "\n"
        f"Reply in {language_name(locale)} with less than {MAX_CHAT_REPLY_WORDS} words. "
        'Respond ONLY with exactly one JSON object: {"response": "your reply"}'
    )
