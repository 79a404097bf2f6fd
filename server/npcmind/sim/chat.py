from __future__ import annotations

import logging

from npcmind.agents.agent import Entity
from npcmind.config import AgentSettings
from npcmind.llm.client import OracleClient
from npcmind.memory.event_log import EventJournal
from npcmind.sim.decisions import parse_chat_reply
from npcmind.sim.npc_controller import AgentController, Spawner, spawn_task
from npcmind.sim.prompts import build_chat_prompt


LOGGER = logging.getLogger("npcmind.sim.chat")

DEFAULT_REPLY = "Hmm...."
ERROR_REPLY = "I... don't know what to say."


class ChatResponder:
    def __init__(
        self,
        oracle: OracleClient,
        journal: EventJournal,
        controllers: dict[str, AgentController],
        settings: AgentSettings | None = None,
        spawner: Spawner | None = None,
    ):
        self.oracle = oracle
        self.journal = journal
        self.controllers = controllers
        self.settings = settings or AgentSettings()
        self.spawner = spawner

    def deliver(self, speaker: Entity, target: Entity, message: str) -> bool:
        """Record what ``speaker`` said and, if ``target`` is an NPC, start its reply."""
        self.journal.log_event(
            speaker,
            "chat",
            f'{speaker.name} said "{message}" to {target.name}.',
            target=target,
            details={"message": message},
        )
        if target.dead or not isinstance(self.controllers.get(target.id), AgentController):
            return False
        return spawn_task(self.respond(target, speaker, message), self.spawner)

    async def respond(self, responder: Entity, speaker: Entity, message: str) -> str:
        events = self.journal.log_for(responder.id).recent(self.settings.chat_prompt_events)
        prompt = build_chat_prompt(
            responder_name=responder.name,
            responder_persona=responder.persona,
            speaker_name=speaker.name,
            message=message,
            events=events,
            locale=self.settings.locale,
        )
        try:
            raw = await self.oracle.invoke(prompt)
        except Exception as exc:
            LOGGER.exception("chat reply failed for %s", responder.name)
            responder.display_text = ERROR_REPLY
            self.journal.log_event(
                responder,
                "chat_error",
                f"{responder.name} failed to respond to {speaker.name}.",
                target=speaker,
                details={"error": str(exc)},
            )
            self._schedule_follow_ups(responder, speaker)
            return ERROR_REPLY

        reply = parse_chat_reply(raw) or DEFAULT_REPLY
        responder.display_text = reply
        self.journal.log_event(
            responder,
            "chat",
            f'{responder.name} said "{reply}" to {speaker.name}.',
            target=speaker,
            details={"message": reply},
        )
        self._schedule_follow_ups(responder, speaker)
        return reply

    def _schedule_follow_ups(self, *participants: Entity) -> None:
        for participant in participants:
            controller = self.controllers.get(participant.id)
            if isinstance(controller, AgentController):
                controller.schedule_follow_up()
