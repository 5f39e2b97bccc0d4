"""Budget-constrained per-agent memory snapshots.

`MemoryCapper.build` keeps the best-scored working-memory items, every
preserved motif and a short persona line, then shrinks the result until its
serialized size fits the per-agent byte budget. Shrink order: persona line,
then recent memories (lowest score first), then motif variations, then the
persona line entirely. Motifs themselves are never dropped.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import replace

from chatpipes.clock import Clock, SystemClock
from chatpipes.config import CapperConfig
from chatpipes.errors import BudgetViolation
from chatpipes.events import EventBus, EventType
from chatpipes.memory.models import (
    ItemKind,
    MemoryItem,
    MemorySnapshot,
    RunningMotif,
    StyleVector,
)

logger = logging.getLogger(__name__)

POSITIVE_WORDS = ("like", "love", "enjoy", "great", "amazing", "wonderful", "friendly")
NEGATIVE_WORDS = ("hate", "dislike", "suspicious", "worried", "angry", "annoyed")

_PERSONA_SHRINK = 0.8
_MAX_INSIGHTS = 3


def _json_size(value: object) -> int:
    return len(json.dumps(value, ensure_ascii=False).encode("utf-8"))


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]
    return text[: limit - 3] + "..."


def snapshot_size(
    motifs: dict[str, RunningMotif],
    recent: list[MemoryItem],
    persona: str,
    style: StyleVector,
) -> int:
    """Serialized UTF-8 size of the budgeted part of a snapshot."""
    return _json_size(
        {
            "motifs": {mid: m.to_dict() for mid, m in motifs.items()},
            "recentMemories": [item.to_dict() for item in recent],
            "personaSummary": persona,
            "styleVector": style.to_dict(),
        }
    )


class MemoryCapper:
    """Builds and keeps the latest snapshot per agent."""

    def __init__(
        self,
        config: CapperConfig | None = None,
        *,
        clock: Clock | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.config = config or CapperConfig()
        self.clock = clock or SystemClock()
        self.events = events or EventBus()
        self._snapshots: dict[str, MemorySnapshot] = {}
        self._lock = threading.Lock()

    # ── Selection ─────────────────────────────────────────────

    def score(self, item: MemoryItem, now: float) -> float:
        window = self.config.recency_window_hours * 3600
        recency = max(0.0, 1.0 - (now - item.timestamp) / window) if window > 0 else 0.0
        weight = self.config.recency_weight
        return weight * recency + (1 - weight) * item.confidence

    def prioritize(self, items: list[MemoryItem], now: float) -> list[MemoryItem]:
        """Confident items, best score first, at most max_recent_memories."""
        confident = [i for i in items if i.confidence >= self.config.min_confidence_threshold]
        confident.sort(key=lambda i: self.score(i, now), reverse=True)
        return confident[: self.config.max_recent_memories]

    def preserve_motifs(self, motifs: dict[str, RunningMotif]) -> dict[str, RunningMotif]:
        threshold = self.config.motif_preservation_threshold
        return {mid: m for mid, m in motifs.items() if m.usage_count >= threshold}

    # ── Persona ───────────────────────────────────────────────

    def persona_summary(self, items: list[MemoryItem], style: StyleVector | None = None) -> str:
        counts = {kind: 0 for kind in ItemKind}
        for item in items:
            counts[item.kind] += 1

        traits = []
        if counts[ItemKind.JOKE] > 2:
            traits.append("humorous")
        if counts[ItemKind.SUSPICION] > 1:
            traits.append("suspicious")
        if counts[ItemKind.EMOTION] > 3:
            traits.append("emotional")
        if counts[ItemKind.CALLBACK] > 2:
            traits.append("good memory")
        if counts[ItemKind.FACT] > 5:
            traits.append("factual")
        if style is not None:
            traits.extend(style.traits())
        traits.extend(self._relationship_insights(items))

        summary = ", ".join(traits) if traits else "balanced personality"
        return _truncate(summary, self.config.persona_summary_length)

    @staticmethod
    def _relationship_insights(items: list[MemoryItem]) -> list[str]:
        mentions: dict[str, int] = {}
        for item in items:
            for name in re.findall(r"@(\w{3,})", item.content):
                mentions[name] = mentions.get(name, 0) + 1

        insights = []
        for name, count in mentions.items():
            if count <= 2:
                continue
            about = [i.content.lower() for i in items if name.lower() in i.content.lower()]
            positive = sum(1 for text in about for w in POSITIVE_WORDS if w in text)
            negative = sum(1 for text in about for w in NEGATIVE_WORDS if w in text)
            if positive > negative:
                insights.append(f"friendly with {name}")
            elif negative > positive:
                insights.append(f"suspicious of {name}")
            else:
                insights.append(f"neutral toward {name}")
        return insights[:_MAX_INSIGHTS]

    # ── Build ─────────────────────────────────────────────────

    def build(
        self,
        agent_id: str,
        items: list[MemoryItem],
        motifs: dict[str, RunningMotif],
        style_vector: StyleVector | None = None,
    ) -> MemorySnapshot:
        """Produce a snapshot whose serialized size fits the byte budget."""
        now = self.clock.now()
        budget = self.config.max_size_per_agent_bytes
        style = style_vector or StyleVector()

        recent = self.prioritize(items, now)
        kept_motifs = self.preserve_motifs(motifs)
        persona = self.persona_summary(items, style_vector)
        candidates = len(recent)

        size = snapshot_size(kept_motifs, recent, persona, style)
        if size > budget:
            persona = _truncate(persona, int(self.config.persona_summary_length * _PERSONA_SHRINK))
            size = snapshot_size(kept_motifs, recent, persona, style)

        if size > budget and recent:
            recent, size = self._drop_recent(kept_motifs, recent, persona, style, budget)

        if size > budget:
            kept_motifs = {mid: replace(m, variations=()) for mid, m in kept_motifs.items()}
            size = snapshot_size(kept_motifs, recent, persona, style)

        if size > budget:
            persona = ""
            size = snapshot_size(kept_motifs, recent, persona, style)

        if size > budget:
            raise BudgetViolation(
                f"Snapshot for {agent_id} is {size} bytes with nothing left to drop "
                f"(budget {budget})"
            )

        snapshot = MemorySnapshot(
            agent_id=agent_id,
            motifs=kept_motifs,
            recent_memories=tuple(recent),
            persona_summary=persona,
            style_vector=style,
            size_bytes=size,
            compression_ratio=size / budget,
            last_updated=now,
            budget_bytes=budget,
            dropped=candidates - len(recent),
        )
        with self._lock:
            self._snapshots[agent_id] = snapshot

        logger.info(
            "Snapshot for %s: %d bytes, %d memories, %d motifs (ratio %.3f)",
            agent_id,
            size,
            len(recent),
            len(kept_motifs),
            snapshot.compression_ratio,
        )
        self.events.emit(
            EventType.SNAPSHOT_BUILT,
            "capper",
            agent_id=agent_id,
            size_bytes=size,
            compression_ratio=snapshot.compression_ratio,
        )
        return snapshot

    def _drop_recent(
        self,
        motifs: dict[str, RunningMotif],
        recent: list[MemoryItem],
        persona: str,
        style: StyleVector,
        budget: int,
    ) -> tuple[list[MemoryItem], int]:
        """Drop the lowest-scored items until the snapshot fits or none are left.

        Sizes are tracked incrementally: each list element costs its own JSON
        plus a ", " separator after the first.
        """
        recent = list(recent)
        base = snapshot_size(motifs, [], persona, style)
        costs = [_json_size(item.to_dict()) for item in recent]
        size = base + sum(costs) + 2 * (len(costs) - 1)
        while recent and size > budget:
            recent.pop()
            cost = costs.pop()
            size -= cost + (2 if costs else 0)
        return recent, snapshot_size(motifs, recent, persona, style)

    def latest(self, agent_id: str) -> MemorySnapshot | None:
        with self._lock:
            return self._snapshots.get(agent_id)

    def install(self, snapshot: MemorySnapshot) -> None:
        """Adopt a snapshot rehydrated from persistence."""
        with self._lock:
            self._snapshots[snapshot.agent_id] = snapshot
