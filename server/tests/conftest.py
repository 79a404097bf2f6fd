"""
Shared fixtures: a scripted oracle, a manual clock and a small world harness.
Environment switches are set before any app import so the API tests never
start the background tick loop or talk to a real oracle.
"""
from __future__ import annotations

import os

os.environ.setdefault("TICK_LOOP_ENABLED", "0")
os.environ["NPC_ORACLE_ENABLED"] = "0"

import random
from collections.abc import Coroutine
from typing import Any

import pytest
from fastapi.testclient import TestClient

from npcmind.agents.agent import Entity, EntityKind, InventoryItem, Vec3, WorldObject
from npcmind.config import AgentSettings
from npcmind.llm.client import CredentialState
from npcmind.memory.event_log import EventJournal
from npcmind.sim.npc_controller import AgentContext, AgentController, NullEffects
from npcmind.sim.registry import EntityRegistry, ObjectRegistry
from npcmind.sim.scheduler import ManualClock


class FakeOracle:
    """Stands in for OracleClient: pops scripted replies, records prompts."""

    def __init__(self, responses: list[Any] | None = None):
        self.responses = list(responses or [])
        self.prompts: list[str] = []
        self.enabled = True
        self.model = "fake-model"
        self.credentials = CredentialState(primary="key-1")

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def invoke(self, prompt: str) -> str | None:
        self.prompts.append(prompt)
        if not self.responses:
            return None
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class RecordingEffects(NullEffects):
    def __init__(self) -> None:
        self.chats: list[tuple[str, str, str]] = []
        self.trades: list[tuple[str, str, list[InventoryItem], list[InventoryItem]]] = []

    def chat(self, speaker: Entity, target: Entity, message: str) -> None:
        self.chats.append((speaker.id, target.id, message))

    def trade(self, speaker, target, give, receive) -> None:
        self.trades.append((speaker.id, target.id, give, receive))


class Harness:
    def __init__(self, settings: AgentSettings | None = None):
        self.settings = settings or AgentSettings()
        self.entities = EntityRegistry()
        self.objects = ObjectRegistry()
        self.clock = ManualClock()
        self.oracle = FakeOracle()
        self.journal = EventJournal(self.entities)
        self.effects = RecordingEffects()
        self.pending: list[Coroutine[Any, Any, None]] = []
        self.context = AgentContext(
            entities=self.entities,
            objects=self.objects,
            oracle=self.oracle,
            journal=self.journal,
            clock=self.clock,
            settings=self.settings,
            effects=self.effects,
            spawner=self.pending.append,
        )

    def add_character(self, entity_id: str, x: float = 0.0, z: float = 0.0, **kwargs: Any) -> Entity:
        kwargs.setdefault("name", entity_id)
        entity = Entity(id=entity_id, kind=EntityKind.CHARACTER, pos=Vec3(x, 0.0, z), **kwargs)
        return self.entities.add(entity)

    def add_animal(self, entity_id: str, animal_type: str, x: float = 0.0, z: float = 0.0, **kwargs: Any) -> Entity:
        entity = Entity(
            id=entity_id,
            name=animal_type.capitalize(),
            kind=EntityKind.ANIMAL,
            pos=Vec3(x, 0.0, z),
            animal_type=animal_type,
            **kwargs,
        )
        return self.entities.add(entity)

    def add_resource(self, object_id: str, resource: str | None, x: float = 0.0, z: float = 0.0, object_type: str = "") -> WorldObject:
        obj = WorldObject(id=object_id, type=object_type or (resource or "crate"), pos=Vec3(x, 0.0, z), resource=resource)
        return self.objects.add(obj)

    def controller(self, entity: Entity, seed: int = 7) -> AgentController:
        return AgentController(entity, self.context, rng=random.Random(seed))

    def move(self, item: Entity | WorldObject, x: float, z: float) -> None:
        item.pos = Vec3(x, 0.0, z)
        self.entities.refresh()
        self.objects.refresh()

    async def drain(self) -> None:
        while self.pending:
            await self.pending.pop(0)

    def close(self) -> None:
        for coro in self.pending:
            coro.close()
        self.pending.clear()


@pytest.fixture
def harness():
    h = Harness()
    yield h
    h.close()


@pytest.fixture(scope="session")
def client() -> TestClient:
    from npcmind.main import app

    with TestClient(app) as test_client:
        yield test_client
