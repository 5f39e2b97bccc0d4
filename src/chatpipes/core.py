"""Conductor: the hub that wires agents, dialogues and shared memory.

Responsibilities:
1. Agent registry, keyed by participant id
2. One shared memory store (plus capper, compressor, snapshot repository)
   for every dialogue it creates
3. Background decay task, started and stopped with the hub
4. Transcript export when a dialogue finishes
"""

from __future__ import annotations

import logging
import random
from pathlib import Path
from typing import Sequence

from chatpipes.agents.base import Agent
from chatpipes.clock import Clock, SystemClock
from chatpipes.config import ConductorConfig, DialogueConfig
from chatpipes.dialogue.models import Participant
from chatpipes.dialogue.orchestrator import TurnOrchestrator
from chatpipes.dialogue.transcript import export_transcript
from chatpipes.events import EventBus
from chatpipes.memory.capper import MemoryCapper
from chatpipes.memory.compressor import MemoryCompressor
from chatpipes.memory.maintenance import SnapshotMaintainer
from chatpipes.memory.persistence import FileSnapshotRepository, SnapshotRepository
from chatpipes.memory.scheduler import DecayScheduler
from chatpipes.memory.store import SharedMemoryStore

logger = logging.getLogger(__name__)


class Conductor:
    """Owns shared memory and creates dialogues over it."""

    def __init__(
        self,
        config: ConductorConfig,
        *,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        repository: SnapshotRepository | None = None,
    ) -> None:
        self.config = config
        self.clock = clock or SystemClock()
        self.events = EventBus()
        self.store = SharedMemoryStore(config.memory, clock=self.clock, rng=rng, events=self.events)
        self.capper = MemoryCapper(config.capper, clock=self.clock, events=self.events)
        self.compressor = MemoryCompressor(config.compression, clock=self.clock)
        self.repository = repository or FileSnapshotRepository(config.snapshot_dir)
        self.maintainer = SnapshotMaintainer(self.store, self.compressor, self.capper, self.repository)
        self.scheduler = DecayScheduler(self.store)
        self._agents: dict[str, tuple[str, Agent]] = {}
        self._dialogues: dict[str, TurnOrchestrator] = {}

    # ── Agent management ─────────────────────────────────────

    def add_agent(self, agent: Agent, agent_id: str | None = None, name: str | None = None) -> str:
        agent_id = agent_id or agent.name
        self._agents[agent_id] = (name or agent.name, agent)
        logger.info("Registered agent: %s", agent_id)
        return agent_id

    @property
    def agent_ids(self) -> list[str]:
        return list(self._agents)

    # ── Dialogues ────────────────────────────────────────────

    def create_dialogue(
        self,
        agent_ids: Sequence[str] | None = None,
        *,
        config: DialogueConfig | None = None,
    ) -> TurnOrchestrator:
        """Create a dialogue among registered agents (all of them by default)."""
        ids = list(agent_ids) if agent_ids is not None else self.agent_ids
        missing = [aid for aid in ids if aid not in self._agents]
        if missing:
            raise RuntimeError(f"Agents not registered: {missing}. Available: {self.agent_ids}")

        participants = []
        for aid in ids:
            name, agent = self._agents[aid]
            participants.append(Participant(id=aid, name=name, agent=agent))
            if self.capper.latest(aid) is None:
                self.maintainer.restore(aid)

        orchestrator = TurnOrchestrator(
            participants,
            self.store,
            config=config or self.config.dialogue,
            events=self.events,
            clock=self.clock,
            maintainer=self.maintainer,
        )
        self._dialogues[orchestrator.id] = orchestrator
        logger.info("Created %s with %s", orchestrator.id, ", ".join(ids))
        return orchestrator

    def dialogue(self, dialogue_id: str) -> TurnOrchestrator:
        return self._dialogues[dialogue_id]

    async def run_dialogue(
        self, orchestrator: TurnOrchestrator, transcript_dir: Path | None = None
    ) -> Path:
        """Run a dialogue to the end and export its transcript.

        The transcript is written even when an agent failure ends the run.
        """
        try:
            await orchestrator.run_until_stopped()
        finally:
            path = export_transcript(orchestrator, transcript_dir or self.config.transcript_dir)
            for pid in orchestrator.participant_ids:
                try:
                    self.maintainer.refresh(pid)
                except Exception:
                    logger.exception("Final snapshot refresh for %s failed", pid)
        return path

    # ── Lifecycle ────────────────────────────────────────────

    async def start(self) -> None:
        """Start the background decay task."""
        self.scheduler.spawn()

    async def stop(self) -> None:
        """Stop all dialogues and the decay task."""
        for orchestrator in self._dialogues.values():
            orchestrator.stop()
        await self.scheduler.stop()
