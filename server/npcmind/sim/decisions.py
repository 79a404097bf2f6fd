from __future__ import annotations

import json
import logging
from json import JSONDecodeError, JSONDecoder
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator


LOGGER = logging.getLogger("npcmind.sim.decisions")

MAX_INTENT_WORDS = 10
MAX_CHAT_REPLY_WORDS = 20


def clip_words(text: str, limit: int) -> str:
    words = text.split()
    return " ".join(words[:limit])


class TradeItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, max_length=64)
    count: int = Field(ge=1, le=9999)


class _TargetedDecision(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_id: str = Field(min_length=1, max_length=64)
    intent: str = Field(min_length=1, max_length=280)

    @field_validator("target_id")
    @classmethod
    def _strip_target(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("target_id must not be blank")
        return stripped

    @field_validator("intent")
    @classmethod
    def _short_intent(cls, value: str) -> str:
        clipped = clip_words(value, MAX_INTENT_WORDS)
        if not clipped:
            raise ValueError("intent must not be blank")
        return clipped


class AttackDecision(_TargetedDecision):
    action: Literal["attack"]


class ChatDecision(_TargetedDecision):
    action: Literal["chat"]
    message: str = Field(min_length=1, max_length=500)


class TradeDecision(_TargetedDecision):
    action: Literal["trade"]
    give_items: list[TradeItem] = Field(max_length=16)
    receive_items: list[TradeItem] = Field(max_length=16)


class FollowDecision(_TargetedDecision):
    action: Literal["follow"]


DecisionResult = Annotated[
    Union[AttackDecision, ChatDecision, TradeDecision, FollowDecision],
    Field(discriminator="action"),
]

_DECISION_ADAPTER: TypeAdapter[DecisionResult] = TypeAdapter(DecisionResult)


class ChatReply(BaseModel):
    model_config = ConfigDict(extra="ignore")

    response: str = Field(min_length=1, max_length=500)


def extract_json_object(content: str) -> dict[str, Any] | None:
    normalized = content.strip()
    if not normalized:
        return None

    if normalized.startswith("```"):
        lines = [line for line in normalized.splitlines() if not line.strip().startswith("```")]
        normalized = "\n".join(lines).strip()

    try:
        parsed = json.loads(normalized)
    except JSONDecodeError:
        start = normalized.find("{")
        if start < 0:
            return None
        try:
            parsed, _idx = JSONDecoder().raw_decode(normalized[start:])
        except JSONDecodeError as exc:
            LOGGER.debug("JSON decode failed msg=%r pos=%s prefix=%r", exc.msg, exc.pos, normalized[:180])
            return None
    return parsed if isinstance(parsed, dict) else None


def parse_decision(raw_text: str | None) -> DecisionResult | None:
    if not raw_text:
        return None
    payload = extract_json_object(raw_text)
    if payload is None:
        LOGGER.debug("decision is not a JSON object: %r", raw_text[:180])
        return None
    try:
        return _DECISION_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        LOGGER.debug("decision rejected: %s payload=%r", exc.errors(), payload)
        return None


def parse_chat_reply(raw_text: str | None) -> str | None:
    if not raw_text or not raw_text.strip():
        return None
    payload = extract_json_object(raw_text)
    if payload is None:
        # Plain text answers are accepted as the spoken line.
        if "{" in raw_text:
            return None
        return clip_words(raw_text.strip(), MAX_CHAT_REPLY_WORDS) or None
    try:
        reply = ChatReply.model_validate(payload)
    except ValidationError:
        return None
    return clip_words(reply.response.strip(), MAX_CHAT_REPLY_WORDS) or None
