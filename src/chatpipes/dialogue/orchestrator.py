"""Turn orchestrator: the state machine that runs one dialogue.

States: IDLE -> RUNNING <-> PAUSED -> STOPPED | COMPLETED.

Turns are strictly sequential. Each turn reads shared memory to build the
prompt, applies at most one pending interjection, awaits the agent, then
writes the exchange and its memory captures back without yielding, so a
stop or cancellation never leaves a turn half-recorded.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Awaitable, Callable, Sequence

from chatpipes.clock import Clock, SystemClock
from chatpipes.config import DialogueConfig
from chatpipes.dialogue.context import build_prompt
from chatpipes.dialogue.interjections import InterjectionQueue, apply_interjection
from chatpipes.dialogue.models import (
    BOTH,
    DialogueStatus,
    Exchange,
    Interjection,
    InterjectionKind,
    Participant,
    Priority,
    TurnState,
)
from chatpipes.errors import (
    CollaboratorFailure,
    InvalidStateError,
    NoActiveParticipantsError,
    RoundLimitExceeded,
)
from chatpipes.events import EventBus, EventType
from chatpipes.memory.detection import MemoryDetector
from chatpipes.memory.models import InjectionSuggestion, MemoryItem, MemoryKind
from chatpipes.memory.store import keywords

if TYPE_CHECKING:
    from chatpipes.memory.maintenance import SnapshotMaintainer
    from chatpipes.memory.store import SharedMemoryStore

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]

# Record kinds the detector's per-agent observations do not already cover
_LEDGER_FROM_RECORD = (MemoryKind.METAPHOR, MemoryKind.SURREAL, MemoryKind.THEME, MemoryKind.MOMENT)


class TurnOrchestrator:
    """Round-robin turn taking among participants over a shared memory store."""

    def __init__(
        self,
        participants: Sequence[Participant],
        store: SharedMemoryStore,
        *,
        config: DialogueConfig | None = None,
        events: EventBus | None = None,
        clock: Clock | None = None,
        detector: MemoryDetector | None = None,
        maintainer: SnapshotMaintainer | None = None,
        sleep: Sleeper = asyncio.sleep,
        dialogue_id: str | None = None,
    ) -> None:
        if not participants:
            raise ValueError("A dialogue needs at least one participant")
        ids = [p.id for p in participants]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate participant ids: {ids}")

        self.id = dialogue_id or f"dialogue-{uuid.uuid4().hex[:8]}"
        self.participants = list(participants)
        self.store = store
        self.config = config or DialogueConfig()
        self.events = events or store.events
        self.clock = clock or store.clock
        self.detector = detector or MemoryDetector()
        self.maintainer = maintainer
        self._sleep = sleep

        self._status = DialogueStatus.IDLE
        self._round = 0
        self._turn_index = 0
        self._current_index = 0
        self._history: list[Exchange] = []
        self._queue = InterjectionQueue()

    # ── Introspection ─────────────────────────────────────────

    @property
    def status(self) -> DialogueStatus:
        return self._status

    @property
    def round(self) -> int:
        return self._round

    @property
    def turn_index(self) -> int:
        return self._turn_index

    @property
    def history(self) -> tuple[Exchange, ...]:
        return tuple(self._history)

    @property
    def participant_ids(self) -> list[str]:
        return [p.id for p in self.participants]

    def state(self) -> TurnState:
        return TurnState(
            round=self._round,
            turn_index=self._turn_index,
            current_agent_index=self._current_index,
            status=self._status,
            pending_interjections=self._queue.pending(),
            history=tuple(self._history),
        )

    def participant(self, agent_id: str) -> Participant:
        for p in self.participants:
            if p.id == agent_id:
                return p
        raise KeyError(agent_id)

    def set_active(self, agent_id: str, active: bool) -> None:
        self.participant(agent_id).active = active

    # ── State transitions ─────────────────────────────────────

    def _emit(self, event_type: EventType, **payload) -> None:
        self.events.emit(event_type, self.id, **payload)

    def _start(self) -> None:
        self._status = DialogueStatus.RUNNING
        logger.info("Dialogue %s started with %s", self.id, ", ".join(self.participant_ids))
        self._emit(EventType.DIALOGUE_STARTED, participants=self.participant_ids)

    def _complete(self) -> None:
        if self._status.terminal:
            return
        self._status = DialogueStatus.COMPLETED
        logger.info("Dialogue %s completed after %d rounds", self.id, self._round)
        self._emit(EventType.DIALOGUE_COMPLETED, rounds=self._round, turns=self._turn_index)

    def pause(self) -> None:
        if self._status is not DialogueStatus.RUNNING:
            raise InvalidStateError(f"Cannot pause a dialogue that is {self._status.value}")
        self._status = DialogueStatus.PAUSED
        logger.info("Dialogue %s paused", self.id)
        self._emit(EventType.DIALOGUE_PAUSED)

    def resume(self) -> None:
        if self._status is not DialogueStatus.PAUSED:
            raise InvalidStateError(f"Cannot resume a dialogue that is {self._status.value}")
        self._status = DialogueStatus.RUNNING
        logger.info("Dialogue %s resumed", self.id)
        self._emit(EventType.DIALOGUE_RESUMED)

    def stop(self) -> None:
        """Stop the dialogue. A turn already awaiting its agent still completes."""
        if self._status.terminal:
            return
        self._status = DialogueStatus.STOPPED
        logger.info("Dialogue %s stopped", self.id)
        self._emit(EventType.DIALOGUE_STOPPED, reason="requested")

    # ── Interjections ─────────────────────────────────────────

    def add_interjection(self, interjection: Interjection) -> Interjection:
        if self._status.terminal:
            raise InvalidStateError(f"Dialogue is {self._status.value}")
        if interjection.target != BOTH and interjection.target not in self.participant_ids:
            raise ValueError(f"Unknown interjection target: {interjection.target}")
        queued = self._queue.add(interjection)
        logger.debug("Queued %s interjection for %s", queued.kind.value, queued.target)
        self._emit(EventType.INTERJECTION_ADDED, interjection=queued)
        return queued

    def interject(
        self,
        text: str,
        *,
        kind: InterjectionKind | str = InterjectionKind.SIDE_QUESTION,
        target: str = BOTH,
        priority: Priority | str = Priority.MEDIUM,
    ) -> Interjection:
        return self.add_interjection(
            Interjection(
                id=f"interjection-{uuid.uuid4().hex[:8]}",
                kind=InterjectionKind(kind),
                text=text,
                target=target,
                priority=Priority(priority),
                created_at=self.clock.now(),
            )
        )

    def pending_interjections(self) -> tuple[Interjection, ...]:
        return self._queue.pending()

    # ── Turns ─────────────────────────────────────────────────

    def _select(self) -> tuple[int, int, list[Participant]]:
        """Next speaker index, the round it speaks in, and who was skipped.

        Pure: nothing is committed until the caller decides to proceed.
        """
        n = len(self.participants)
        skipped: list[Participant] = []
        for offset in range(n):
            position = self._current_index + offset
            candidate = self.participants[position % n]
            if candidate.active or not self.config.skip_inactive_agents:
                return position % n, self._round + position // n, skipped
            skipped.append(candidate)
        raise NoActiveParticipantsError(f"No active participants in {self.id}")

    async def next_turn(self) -> Exchange:
        """Run exactly one turn and return its exchange."""
        if self._status is DialogueStatus.PAUSED:
            raise InvalidStateError("Dialogue is paused")
        if self._status is DialogueStatus.STOPPED:
            raise InvalidStateError("Dialogue is stopped")
        if self._round >= self.config.max_rounds:
            self._complete()
            raise RoundLimitExceeded(self.config.max_rounds)
        if self._status.terminal:
            raise InvalidStateError(f"Dialogue is {self._status.value}")

        index, round_, skipped = self._select()
        if round_ >= self.config.max_rounds:
            self._round = round_
            self._complete()
            raise RoundLimitExceeded(self.config.max_rounds)
        if self._status is DialogueStatus.IDLE:
            self._start()

        for p in skipped:
            logger.debug("Skipping inactive participant %s", p.id)
            if self.config.interjection_skip_policy == "expire":
                self._queue.drop_targeted(p.id)
        self._current_index = index
        self._round = round_
        participant = self.participants[index]

        context = self._history[-1].message if self._history else (self.config.topic or "")
        suggestions = self.store.generate_injection_suggestions(self.participant_ids, context)
        snapshot = self.maintainer.capper.latest(participant.id) if self.maintainer else None
        prompt = build_prompt(
            self._history,
            participant.id,
            strategy=self.config.synthesis_strategy,
            window=self.config.context_window,
            participant_names={p.id: p.name for p in self.participants},
            topic=self.config.topic,
            suggestions=suggestions,
            snapshot=snapshot,
        )
        # Dequeued before the call: a failed turn loses its interjection
        interjection = self._queue.pop_for(participant.id)
        if interjection is not None:
            prompt = apply_interjection(prompt, interjection)
            logger.info("Applied %s interjection to %s", interjection.kind.value, participant.id)

        self._emit(
            EventType.TURN_START,
            agent_id=participant.id,
            round=self._round + 1,
            turn_index=self._turn_index,
            interjection_id=interjection.id if interjection else None,
        )

        try:
            message = await participant.agent.respond(prompt)
        except Exception as e:
            self._status = DialogueStatus.STOPPED
            logger.error("Agent %s failed in %s: %s", participant.id, self.id, e)
            self._emit(EventType.ERROR, agent_id=participant.id, error=str(e))
            self._emit(EventType.DIALOGUE_STOPPED, reason="error")
            raise CollaboratorFailure(participant.id, str(e)) from e

        exchange = Exchange(
            agent_id=participant.id,
            agent_name=participant.name,
            message=message,
            round=self._round + 1,
            timestamp=self.clock.now(),
            prompt=prompt,
            applied_interjection_id=interjection.id if interjection else None,
        )
        self._history.append(exchange)
        self._remember(participant, message, context, suggestions)
        refresh_due = self._advance()
        self._emit(EventType.TURN_END, exchange=exchange, message=message)
        if refresh_due:
            self._refresh_snapshots()

        if self._round >= self.config.max_rounds and not self._status.terminal:
            self._complete()
        if self._status is DialogueStatus.RUNNING and self.config.turn_delay_ms > 0:
            await self._sleep(self.config.turn_delay_ms / 1000)
        return exchange

    def _advance(self) -> bool:
        """Move to the next speaker; True when snapshots are due for a refresh."""
        self._turn_index += 1
        self._current_index += 1
        if self._current_index >= len(self.participants):
            self._current_index = 0
            self._round += 1

        every = len(self.participants) * max(1, self.config.snapshot_every_rounds)
        return self.maintainer is not None and self._turn_index % every == 0

    def _refresh_snapshots(self) -> None:
        for pid in self.participant_ids:
            try:
                self.maintainer.refresh(pid)
            except Exception as e:
                logger.exception("Snapshot refresh for %s failed in %s", pid, self.id)
                self._emit(EventType.ERROR, agent_id=pid, error=str(e))

    def _remember(
        self,
        participant: Participant,
        message: str,
        context: str,
        suggestions: list[InjectionSuggestion],
    ) -> None:
        """Feed a reply back into shared memory. Synchronous by construction."""
        ids = self.participant_ids
        now = self.clock.now()
        lowered = message.lower()

        for suggestion in suggestions:
            if suggestion.kind != "callback":
                continue
            words = suggestion.trigger_phrase.split()
            used = bool(words) and any(w in lowered for w in words)
            self.store.reinforce_on_use(suggestion.source_id, success=used)

        new_records = set()
        items: list[MemoryItem] = []
        for detection in self.detector.detect(message):
            record = self.store.capture(
                detection.kind,
                detection.text,
                ids,
                importance=detection.importance,
                emotional_charge=detection.emotional_charge,
                context=context[:100],
                tags=detection.tags,
            )
            new_records.add(record.id)
            if record.kind in _LEDGER_FROM_RECORD:
                items.append(MemoryItem.from_record(record, participant.id))

        for motif in self.store.active_motifs(ids):
            if motif.record_id in new_records:
                continue
            words = keywords(motif.name)
            if words and any(w in lowered for w in words):
                self.store.add_variation(motif.id, message[:200])

        items.extend(self.detector.observe(participant.id, message, now))
        self.store.observe(participant.id, items)

    async def run_until_stopped(self) -> list[Exchange]:
        """Take turns until stopped, completed, or an agent fails.

        While paused, polls instead of failing. Agent failures propagate as
        CollaboratorFailure after the dialogue has moved to STOPPED.
        """
        poll = self.config.pause_poll_interval_ms / 1000
        while True:
            if self._status.terminal:
                break
            if self._status is DialogueStatus.PAUSED:
                await self._sleep(poll)
                continue
            try:
                await self.next_turn()
            except RoundLimitExceeded:
                break
        return list(self._history)
