from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import uvicorn
from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from npcmind.config import AgentSettings, AnimalSettings, WorldSettings, env_bool, env_int, env_str, load_env_file
from npcmind.db.models import ControlDamageIn, ControlEntityIn, ControlSayIn, ControlSpeedIn
from npcmind.llm.client import OracleClient
from npcmind.sim.engine import World


# server/npcmind/main.py -> the .env lives next to the "server" directory
load_env_file(Path(__file__).resolve().parents[2] / ".env")

logging.basicConfig(
    level=getattr(logging, env_str("NPC_LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
LOGGER = logging.getLogger("npcmind.main")

T = TypeVar("T")


class StreamHub:
    """Websocket fan-out for world snapshots and events."""

    def __init__(self) -> None:
        self._sockets: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sockets)

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        async with self._lock:
            self._sockets.add(ws)

    async def disconnect(self, ws: WebSocket) -> None:
        async with self._lock:
            self._sockets.discard(ws)

    @staticmethod
    def encode(kind: str, payload: Any) -> str:
        return json.dumps({"type": kind, "payload": payload}, ensure_ascii=False)

    async def publish(self, kind: str, payload: Any) -> None:
        async with self._lock:
            sockets = list(self._sockets)
        if not sockets:
            return
        frame = self.encode(kind, payload)
        results = await asyncio.gather(*(ws.send_text(frame) for ws in sockets), return_exceptions=True)
        dead = [ws for ws, result in zip(sockets, results) if isinstance(result, Exception)]
        if dead:
            LOGGER.debug("dropping %d closed stream sockets", len(dead))
            async with self._lock:
                self._sockets.difference_update(dead)


@dataclass
class TickStats:
    last_ms: float = 0.0
    avg_ms: float = 0.0
    smoothing: float = 0.12

    def record(self, elapsed_ms: float) -> None:
        self.last_ms = elapsed_ms
        if self.avg_ms <= 0.0:
            self.avg_ms = elapsed_ms
        else:
            self.avg_ms += (elapsed_ms - self.avg_ms) * self.smoothing

    def to_payload(self) -> dict:
        return {"last_tick_ms": round(self.last_ms, 3), "avg_tick_ms": round(self.avg_ms, 3)}


WORLD_SETTINGS = WorldSettings.from_env()
TICK_LOOP_ENABLED = env_bool("TICK_LOOP_ENABLED", True)

app = FastAPI(title="npcmind simulation server", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

world = World.build_default(
    oracle=OracleClient.from_env(),
    agent_settings=AgentSettings.from_env(),
    animal_settings=AnimalSettings.from_env(),
    settings=WORLD_SETTINGS,
)
hub = StreamHub()
stats = TickStats()


async def publish_tick(events: list[dict]) -> None:
    await hub.publish("entities_state", world.entities_state_payload())
    for event in events:
        await hub.publish("event", event)


async def run_world() -> None:
    while True:
        await asyncio.sleep(WORLD_SETTINGS.tick_interval_sec / max(world.speed, 0.1))
        started = time.perf_counter()
        try:
            result = world.step()
        except Exception:
            LOGGER.exception("world step failed at tick=%s", world.tick)
            continue
        await publish_tick(result.events)
        stats.record((time.perf_counter() - started) * 1000.0)


async def apply_control(action: Callable[[], T]) -> T:
    """Run a world mutation, map its errors to HTTP codes and stream what it logged."""
    before = world.journal.sequence
    try:
        outcome = action()
    except KeyError:
        raise HTTPException(status_code=404, detail="entity not found") from None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None
    except RuntimeError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from None
    await publish_tick([entry.to_payload() for entry in world.journal.events_since(before)])
    return outcome


@app.on_event("startup")
async def startup() -> None:
    if TICK_LOOP_ENABLED:
        app.state.world_task = asyncio.create_task(run_world())
    LOGGER.info(
        "world ready: entities=%d objects=%d oracle_enabled=%s tick_loop=%s",
        len(world.entities),
        len(world.objects),
        world.oracle.enabled,
        TICK_LOOP_ENABLED,
    )


@app.on_event("shutdown")
async def shutdown() -> None:
    task = getattr(app.state, "world_task", None)
    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/api/state")
async def state() -> dict:
    snapshot = world.state_payload()
    snapshot["runtime"] = {**stats.to_payload(), "stream_clients": len(hub)}
    return snapshot


@app.get("/api/agents")
async def list_agents() -> list[dict]:
    return world.agents_list_payload()


@app.get("/api/agents/{agent_id}")
async def get_agent(agent_id: str) -> dict:
    details = world.agent_details(agent_id)
    if details is None:
        raise HTTPException(status_code=404, detail="agent not found")
    return details


@app.get("/api/events")
async def list_events(
    limit: int = Query(default=200, ge=1, le=500),
    agent_id: str | None = Query(default=None),
) -> list[dict]:
    return world.events_payload(limit=limit, agent_id=agent_id)


@app.post("/api/control/damage")
async def control_damage(payload: ControlDamageIn) -> dict:
    entity = await apply_control(lambda: world.damage(payload.entity_id, payload.amount))
    return {"accepted": True, "entity": entity.to_state_payload()}


@app.post("/api/control/kill")
async def control_kill(payload: ControlEntityIn) -> dict:
    entity = await apply_control(lambda: world.kill(payload.entity_id))
    return {"accepted": True, "entity": entity.to_state_payload()}


@app.post("/api/control/respawn")
async def control_respawn(payload: ControlEntityIn) -> dict:
    entity = await apply_control(lambda: world.respawn(payload.entity_id))
    return {"accepted": True, "entity": entity.to_state_payload()}


@app.post("/api/control/say")
async def control_say(payload: ControlSayIn) -> dict:
    reply_pending = await apply_control(lambda: world.player_say(payload.target_id, payload.text))
    return {"accepted": True, "reply_pending": reply_pending}


@app.post("/api/control/speed")
async def control_speed(payload: ControlSpeedIn) -> dict:
    return {"speed": world.update_speed(payload.speed)}


@app.websocket("/ws/stream")
async def stream(ws: WebSocket) -> None:
    await hub.connect(ws)
    try:
        await ws.send_text(hub.encode("entities_state", world.entities_state_payload()))
        for event in world.events_payload(limit=10):
            await ws.send_text(hub.encode("event", event))
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        LOGGER.debug("stream client disconnected")
    finally:
        await hub.disconnect(ws)


def run() -> None:
    uvicorn.run(
        "npcmind.main:app",
        host=env_str("NPC_HOST", "0.0.0.0"),
        port=env_int("NPC_PORT", 8000, 1, 65535),
        log_level=env_str("NPC_LOG_LEVEL", "INFO").lower(),
    )


if __name__ == "__main__":
    run()
