"""Shared conversational memory: records, running motifs and callback triggers.

One store may back several dialogues at once. Every read and write goes
through a single re-entrant lock, and stored values are frozen dataclasses
that are swapped wholesale, so the periodic decay task and orchestrators
never observe a half-updated record. Events are emitted after the lock is
released.
"""

from __future__ import annotations

import logging
import random
import re
import threading
from dataclasses import replace
from typing import Iterable

from chatpipes.clock import Clock, SystemClock
from chatpipes.config import MemoryConfig
from chatpipes.events import EventBus, EventType
from chatpipes.memory.models import (
    CallbackTrigger,
    InjectionSuggestion,
    MemoryItem,
    MemoryKind,
    MemoryRecord,
    MotifKind,
    RunningMotif,
    new_id,
)

logger = logging.getLogger(__name__)

_HOUR = 3600.0

THEME_KEYWORDS = (
    "quantum",
    "surreal",
    "absurd",
    "magical",
    "dream",
    "reality",
    "existence",
    "consciousness",
)
_THEME_RE = re.compile(r"\b(" + "|".join(THEME_KEYWORDS) + r")\b")

_STOPWORDS = frozenset(
    "this that with from have what when where which there their about would could "
    "should just like they them then than your been were will into very some".split()
)


def _words(text: str) -> set[str]:
    return set(text.lower().split())


def context_overlap(text: str, context: str) -> float:
    """Jaccard overlap of lowercased whitespace word sets. 0.5 for empty context."""
    if not context.strip():
        return 0.5
    a, b = _words(text), _words(context)
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def keywords(text: str, limit: int = 3) -> list[str]:
    """Longest distinctive words of a text, in order of appearance."""
    seen: list[str] = []
    for raw in re.findall(r"[A-Za-z']+", text.lower()):
        if len(raw) > 3 and raw not in _STOPWORDS and raw not in seen:
            seen.append(raw)
    ranked = sorted(seen, key=lambda w: (-len(w), seen.index(w)))[:limit]
    return [w for w in seen if w in ranked]


def joke_name(text: str) -> str:
    words = " ".join(text.split(" ")[:3])
    return words[:20] + "..." if len(words) > 20 else words


def theme_name(text: str) -> str:
    match = _THEME_RE.search(text.lower())
    return match.group(1) if match else "shared experience"


def surreal_name(text: str) -> str:
    return text[:50] + "..." if len(text) > 50 else text


def emotional_tone(charge: float) -> str:
    if charge > 0.5:
        return "joyful"
    if charge > 0.2:
        return "positive"
    if charge > -0.2:
        return "neutral"
    if charge > -0.5:
        return "melancholic"
    return "dark"


class SharedMemoryStore:
    """Canonical, decaying pool of shared memories for a set of participants."""

    def __init__(
        self,
        config: MemoryConfig | None = None,
        *,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.config = config or MemoryConfig()
        self.clock = clock or SystemClock()
        self.rng = rng or random.Random()
        self.events = events or EventBus()
        self._lock = threading.RLock()
        self._records: dict[str, MemoryRecord] = {}
        self._motifs: dict[str, RunningMotif] = {}
        self._triggers: dict[str, CallbackTrigger] = {}
        self._ledger: dict[str, list[MemoryItem]] = {}

    # ── Capture ───────────────────────────────────────────────

    def capture(
        self,
        kind: MemoryKind | str,
        text: str,
        participants: Iterable[str],
        importance: float = 0.5,
        emotional_charge: float = 0.0,
        context: str = "",
        tags: Iterable[str] = (),
    ) -> MemoryRecord:
        """Record a noteworthy moment. Never fails.

        Depending on kind and importance, also derives a running motif and a
        callback trigger.
        """
        kind = MemoryKind(kind)
        now = self.clock.now()
        record = MemoryRecord(
            id=new_id("memory"),
            kind=kind,
            text=text,
            participant_ids=frozenset(participants),
            created_at=now,
            importance=importance,
            emotional_charge=emotional_charge,
            strength=importance,
            last_referenced_at=now,
            decayed_at=now,
            tags=frozenset(tags),
            context=context,
        )

        with self._lock:
            self._records[record.id] = record
            motif = self._derive_motif(record, now)
            if motif is not None:
                self._motifs[motif.id] = motif
            if record.importance > self.config.callback_threshold:
                trigger = CallbackTrigger(
                    id=new_id("trigger"),
                    memory_id=record.id,
                    trigger_phrase=" ".join(keywords(text)),
                    frequency=record.importance,
                )
                self._triggers[trigger.id] = trigger
            evicted = self._evict_overflow()

        logger.debug("Captured %s memory %s (importance=%.2f)", kind.value, record.id, importance)
        if evicted:
            logger.info("Evicted %d memories over the %d cap", evicted, self.config.max_memories)
        self.events.emit(EventType.MEMORY_CAPTURED, "memory", record=record)
        if motif is not None:
            logger.info("New %s motif %r", motif.kind.value, motif.name)
            self.events.emit(EventType.MOTIF_CREATED, "memory", motif=motif, record=record)
        return record

    def _derive_motif(self, record: MemoryRecord, now: float) -> RunningMotif | None:
        if record.kind is MemoryKind.JOKE and record.importance > self.config.joke_threshold:
            motif_kind, name = MotifKind.JOKE, joke_name(record.text)
            tags = record.tags
        elif record.kind is MemoryKind.THEME and record.importance > self.config.theme_threshold:
            motif_kind, name = MotifKind.THEME, theme_name(record.text)
            tags = record.tags
        elif record.kind is MemoryKind.SURREAL and record.importance > self.config.surreal_threshold:
            motif_kind, name = MotifKind.SURREAL, surreal_name(record.text)
            lowered = record.text.lower()
            tags = record.tags | {k for k in THEME_KEYWORDS if k in lowered}
        else:
            return None
        return RunningMotif(
            id=new_id(motif_kind.value),
            kind=motif_kind,
            name=name,
            record_id=record.id,
            participant_ids=record.participant_ids,
            created_at=now,
            strength=record.importance,
            last_referenced_at=now,
            decayed_at=now,
            tone=emotional_tone(record.emotional_charge),
            tags=tags,
        )

    def _evict_overflow(self) -> int:
        """Drop the weakest records beyond max_memories, inactive ones first.

        Triggers and motifs derived from a dropped record go with it.
        """
        overflow = len(self._records) - self.config.max_memories
        if overflow <= 0:
            return 0
        victims = sorted(self._records.values(), key=lambda r: (r.active, r.strength, r.created_at))
        evicted = {record.id for record in victims[:overflow]}
        for record_id in evicted:
            del self._records[record_id]
        for trigger_id in [t.id for t in self._triggers.values() if t.memory_id in evicted]:
            del self._triggers[trigger_id]
        for motif_id in [m.id for m in self._motifs.values() if m.record_id in evicted]:
            del self._motifs[motif_id]
        return overflow

    # ── Retrieval ─────────────────────────────────────────────

    def _motif_threshold(self, kind: MotifKind) -> float:
        return {
            MotifKind.JOKE: self.config.joke_threshold,
            MotifKind.THEME: self.config.theme_threshold,
            MotifKind.SURREAL: self.config.surreal_threshold,
        }[kind]

    def _relevance(self, record: MemoryRecord, context: str, now: float) -> float:
        hours = (now - record.last_referenced_at) / _HOUR
        recency = max(0.0, 1.0 - hours / 24.0)
        return 0.4 * context_overlap(record.text, context) + 0.4 * record.strength + 0.2 * recency

    def relevant_memories(
        self, participants: Iterable[str], context: str = "", limit: int | None = None
    ) -> list[MemoryRecord]:
        """Active records shared with any of the participants, best first."""
        wanted = set(participants)
        limit = self.config.relevant_limit if limit is None else limit
        now = self.clock.now()
        with self._lock:
            candidates = [
                r
                for r in self._records.values()
                if r.active
                and r.strength > self.config.callback_threshold
                and r.participant_ids & wanted
            ]
        candidates.sort(key=lambda r: self._relevance(r, context, now), reverse=True)
        return candidates[:limit]

    def active_motifs(
        self, participants: Iterable[str], kind: MotifKind | str | None = None
    ) -> list[RunningMotif]:
        """Motifs above their kind's threshold, strongest first."""
        wanted = set(participants)
        kind = MotifKind(kind) if kind is not None else None
        with self._lock:
            motifs = [
                m
                for m in self._motifs.values()
                if m.active
                and (kind is None or m.kind is kind)
                and m.participant_ids & wanted
                and m.strength > self._motif_threshold(m.kind)
            ]
        motifs.sort(key=lambda m: m.strength, reverse=True)
        return motifs

    def get_record(self, memory_id: str) -> MemoryRecord | None:
        with self._lock:
            return self._records.get(memory_id)

    def get_motif(self, motif_id: str) -> RunningMotif | None:
        with self._lock:
            return self._motifs.get(motif_id)

    def triggers_for(self, memory_id: str) -> list[CallbackTrigger]:
        with self._lock:
            return [t for t in self._triggers.values() if t.memory_id == memory_id]

    def records_for(self, participants: Iterable[str]) -> list[MemoryRecord]:
        wanted = set(participants)
        with self._lock:
            records = [r for r in self._records.values() if r.participant_ids & wanted]
        return sorted(records, key=lambda r: r.created_at)

    def motifs_for(self, agent_id: str) -> dict[str, RunningMotif]:
        with self._lock:
            return {mid: m for mid, m in self._motifs.items() if agent_id in m.participant_ids}

    # ── Reinforcement ─────────────────────────────────────────

    def reinforce_on_use(self, memory_id: str, success: bool = True) -> None:
        """Count a reference to a record or motif. Unknown ids are ignored.

        Success adds 0.1 strength and restarts the decay clock. A failed
        reference only bumps the counters.
        """
        now = self.clock.now()
        with self._lock:
            record = self._records.get(memory_id)
            if record is not None:
                changes: dict = {"reference_count": record.reference_count + 1}
                if success:
                    strength = min(1.0, record.strength + 0.1)
                    changes.update(
                        strength=strength,
                        last_referenced_at=now,
                        decayed_at=now,
                        active=record.active or strength >= self.config.inactive_threshold,
                    )
                self._records[memory_id] = replace(record, **changes)
                for trigger in [t for t in self._triggers.values() if t.memory_id == memory_id]:
                    self._triggers[trigger.id] = replace(
                        trigger,
                        success_count=trigger.success_count + (1 if success else 0),
                        failure_count=trigger.failure_count + (0 if success else 1),
                        last_triggered_at=now,
                    )
                return

            motif = self._motifs.get(memory_id)
            if motif is not None:
                changes = {"usage_count": motif.usage_count + 1}
                if success:
                    strength = min(1.0, motif.strength + 0.1)
                    changes.update(
                        strength=strength,
                        last_referenced_at=now,
                        decayed_at=now,
                        active=motif.active or strength >= self.config.inactive_threshold,
                    )
                self._motifs[memory_id] = replace(motif, **changes)
                return

        logger.debug("reinforce_on_use: unknown id %s ignored", memory_id)

    def add_variation(self, motif_id: str, text: str) -> None:
        """Append a new take on a running motif. Unknown ids are ignored."""
        now = self.clock.now()
        with self._lock:
            motif = self._motifs.get(motif_id)
            if motif is None:
                return
            self._motifs[motif_id] = replace(
                motif,
                variations=motif.variations + (text,),
                usage_count=motif.usage_count + 1,
                strength=min(1.0, motif.strength + 0.05),
                last_referenced_at=now,
                decayed_at=now,
            )

    # ── Decay ─────────────────────────────────────────────────

    def decay(self) -> int:
        """Apply time-based decay to every active record and motif.

        Strength drops by ``decay_rate_per_hour`` per hour elapsed since the
        later of the last reference and the previous decay. Returns the number
        of items that became inactive.
        """
        now = self.clock.now()
        rate = self.config.decay_rate_per_hour
        floor = self.config.inactive_threshold
        deactivated = 0
        with self._lock:
            for rid, record in list(self._records.items()):
                if not record.active:
                    continue
                strength = max(0.0, record.strength - rate * (now - record.decayed_at) / _HOUR)
                active = strength >= floor
                deactivated += not active
                self._records[rid] = replace(record, strength=strength, decayed_at=now, active=active)
            for mid, motif in list(self._motifs.items()):
                if not motif.active:
                    continue
                strength = max(0.0, motif.strength - rate * (now - motif.decayed_at) / _HOUR)
                active = strength >= floor
                deactivated += not active
                self._motifs[mid] = replace(motif, strength=strength, decayed_at=now, active=active)
            active_records = sum(1 for r in self._records.values() if r.active)
            active_motifs = sum(1 for m in self._motifs.values() if m.active)

        if deactivated:
            logger.info("Decay deactivated %d memories", deactivated)
        self.events.emit(
            EventType.MEMORIES_REINFORCED,
            "memory",
            active_memories=active_records,
            active_motifs=active_motifs,
            deactivated=deactivated,
        )
        return deactivated

    # ── Injection suggestions ─────────────────────────────────

    def generate_injection_suggestions(
        self, participants: Iterable[str], context: str = ""
    ) -> list[InjectionSuggestion]:
        """Sample callbacks and motifs worth weaving into the next prompt.

        Each candidate is included with its kind's probability, drawn from
        ``self.rng``, so the same state does not always yield the same picks.
        """
        participants = list(participants)
        cfg = self.config
        suggestions: list[InjectionSuggestion] = []

        for record in self.relevant_memories(participants, context, cfg.relevant_limit):
            if self.rng.random() < cfg.callback_frequency:
                triggers = self.triggers_for(record.id)
                phrase = triggers[0].trigger_phrase if triggers else " ".join(keywords(record.text))
                suggestions.append(
                    InjectionSuggestion(
                        kind="callback",
                        content=f'If appropriate, reference the earlier moment: "{record.text}"',
                        priority=record.strength,
                        participants=record.participant_ids,
                        source_id=record.id,
                        trigger_phrase=phrase,
                    )
                )

        templates = (
            (
                MotifKind.JOKE,
                cfg.joke_frequency,
                'Consider referencing the running joke about "{name}" if it fits naturally',
            ),
            (
                MotifKind.THEME,
                cfg.theme_frequency,
                'Continue developing the shared theme of "{name}" if relevant',
            ),
            (
                MotifKind.SURREAL,
                cfg.surreal_frequency,
                'Consider referencing the surreal moment about "{name}" if it fits',
            ),
        )
        for kind, probability, template in templates:
            for motif in self.active_motifs(participants, kind):
                if self.rng.random() < probability:
                    suggestions.append(
                        InjectionSuggestion(
                            kind=kind.value,
                            content=template.format(name=motif.name),
                            priority=motif.strength,
                            participants=motif.participant_ids,
                            source_id=motif.id,
                            trigger_phrase=" ".join(keywords(motif.name)),
                        )
                    )

        suggestions.sort(key=lambda s: s.priority, reverse=True)
        return suggestions

    # ── Per-agent working memory ──────────────────────────────

    def observe(self, agent_id: str, items: Iterable[MemoryItem]) -> None:
        with self._lock:
            self._ledger.setdefault(agent_id, []).extend(items)

    def agent_items(self, agent_id: str) -> list[MemoryItem]:
        with self._lock:
            return list(self._ledger.get(agent_id, []))

    def replace_agent_items(self, agent_id: str, items: Iterable[MemoryItem]) -> None:
        with self._lock:
            self._ledger[agent_id] = list(items)

    # ── Stats ─────────────────────────────────────────────────

    def stats(self) -> dict[str, int]:
        with self._lock:
            motifs = list(self._motifs.values())
            stats = {
                "total_memories": len(self._records),
                "active_memories": sum(1 for r in self._records.values() if r.active),
                "total_callbacks": len(self._triggers),
                "ledger_items": sum(len(items) for items in self._ledger.values()),
            }
        for kind in MotifKind:
            of_kind = [m for m in motifs if m.kind is kind]
            stats[f"total_{kind.value}"] = len(of_kind)
            stats[f"active_{kind.value}"] = sum(1 for m in of_kind if m.active)
        return stats
