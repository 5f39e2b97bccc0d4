"""Type-aware compaction of an agent's working memory.

Runs before the capper. Each item kind has its own policy:

- facts: near-duplicate groups (word Jaccard above the similarity threshold)
  of the threshold size are merged into one aggregated fact
- jokes and callbacks: reused groups are kept verbatim, most recent wording
- emotions: collapsed into one recency-weighted rolling average with decay
- style observations: folded into the agent's running StyleVector
- suspicions: merged like facts but with their own, lower threshold
- anything else passes through untouched
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace

from chatpipes.clock import Clock, SystemClock
from chatpipes.config import CompressionConfig
from chatpipes.memory.models import ItemKind, MemoryItem, StyleVector, new_id

logger = logging.getLogger(__name__)

_HISTORY_LIMIT = 10


@dataclass(frozen=True)
class CompressionRun:
    timestamp: float
    original_count: int
    compressed_count: int

    @property
    def ratio(self) -> float:
        return self.compressed_count / self.original_count if self.original_count else 1.0


def similarity(a: str, b: str) -> float:
    """Jaccard overlap of the words longer than three characters."""
    words_a = {w for w in a.lower().split(" ") if len(w) > 3}
    words_b = {w for w in b.lower().split(" ") if len(w) > 3}
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def detect_mood(content: str) -> str | None:
    lowered = content.lower()
    if "\U0001F602" in lowered or "funny" in lowered or "hilarious" in lowered:
        return "funny"
    if "strange" in lowered or "weird" in lowered or "surreal" in lowered:
        return "strange"
    if "philosophy" in lowered or "consciousness" in lowered or "existence" in lowered:
        return "philosophical"
    return None


class MemoryCompressor:
    """Compress working memory per kind and track per-agent style vectors."""

    def __init__(self, config: CompressionConfig | None = None, clock: Clock | None = None) -> None:
        self.config = config or CompressionConfig()
        self.clock = clock or SystemClock()
        self._style_vectors: dict[str, StyleVector] = {}
        self._history: list[CompressionRun] = []

    def compress(self, items: list[MemoryItem]) -> list[MemoryItem]:
        now = self.clock.now()
        groups: dict[tuple[ItemKind, str], list[MemoryItem]] = {}
        for item in items:
            groups.setdefault((item.kind, item.agent_id), []).append(item)

        compressed: list[MemoryItem] = []
        for (kind, agent_id), group in groups.items():
            if kind is ItemKind.FACT:
                compressed.extend(
                    self._merge_similar(group, self.config.fact_compression_threshold, now)
                )
            elif kind in (ItemKind.JOKE, ItemKind.CALLBACK):
                compressed.extend(self._preserve_reused(group, now))
            elif kind is ItemKind.EMOTION:
                compressed.extend(self._roll_emotions(group, agent_id, now))
            elif kind is ItemKind.STYLE:
                compressed.extend(self._fold_styles(group, agent_id, now))
            elif kind is ItemKind.SUSPICION:
                compressed.extend(
                    self._merge_similar(group, self.config.suspicion_threshold, now)
                )
            else:
                compressed.extend(group)

        self._record(now, len(items), len(compressed))
        return compressed

    # ── Facts & suspicions ────────────────────────────────────

    def _group_similar(self, items: list[MemoryItem]) -> list[list[MemoryItem]]:
        groups: list[list[MemoryItem]] = []
        taken: set[int] = set()
        for i, item in enumerate(items):
            if i in taken:
                continue
            taken.add(i)
            group = [item]
            for j in range(i + 1, len(items)):
                if j in taken:
                    continue
                if similarity(item.content, items[j].content) > self.config.similarity_threshold:
                    group.append(items[j])
                    taken.add(j)
            groups.append(group)
        return groups

    def _merge_similar(
        self, items: list[MemoryItem], threshold: int, now: float
    ) -> list[MemoryItem]:
        if len(items) < threshold:
            return list(items)
        merged: list[MemoryItem] = []
        for group in self._group_similar(items):
            if len(group) < 2:
                merged.extend(group)
                continue
            aspects: list[str] = []
            for item in group:
                for sentence in re.split(r"[.!?]", item.content):
                    sentence = sentence.strip()
                    if len(sentence) > 10 and sentence not in aspects:
                        aspects.append(sentence)
            average = sum(i.confidence for i in group) / len(group)
            merged.append(
                MemoryItem(
                    id=new_id("item"),
                    agent_id=group[0].agent_id,
                    kind=group[0].kind,
                    content=". ".join(aspects[:3]),
                    confidence=min(1.0, average + 0.1 * len(group)),
                    timestamp=now,
                    compression="aggregated",
                    count=sum(i.count for i in group),
                    first_seen=min(i.first_seen or i.timestamp for i in group),
                )
            )
        return merged

    # ── Jokes & callbacks ─────────────────────────────────────

    def _preserve_reused(self, items: list[MemoryItem], now: float) -> list[MemoryItem]:
        kept: list[MemoryItem] = []
        for group in self._group_similar(items):
            if len(group) >= self.config.joke_preservation_threshold:
                latest = max(group, key=lambda i: i.timestamp)
                kept.append(
                    replace(
                        latest,
                        confidence=min(1.0, latest.confidence + 0.1 * len(group)),
                        compression="verbatim",
                        count=sum(i.count for i in group),
                        first_seen=min(i.first_seen or i.timestamp for i in group),
                        mood=detect_mood(latest.content),
                    )
                )
            else:
                kept.extend(group)
        return kept

    # ── Emotions ──────────────────────────────────────────────

    def _roll_emotions(
        self, items: list[MemoryItem], agent_id: str, now: float
    ) -> list[MemoryItem]:
        newest_first = sorted(items, key=lambda i: i.timestamp, reverse=True)
        weights = [1 / (i + 1) for i in range(len(newest_first))]
        average = sum(w * e.confidence for w, e in zip(weights, newest_first)) / sum(weights)
        return [
            MemoryItem(
                id=new_id("item"),
                agent_id=agent_id,
                kind=ItemKind.EMOTION,
                content=f"Emotional state: {self._summarize_emotions(newest_first[:3])}",
                confidence=max(0.0, average - self.config.emotion_decay),
                timestamp=now,
                compression="rolling",
                count=sum(i.count for i in items),
                first_seen=min(i.first_seen or i.timestamp for i in items),
                mood=detect_mood(newest_first[0].content),
            )
        ]

    @staticmethod
    def _summarize_emotions(recent: list[MemoryItem]) -> str:
        positive = negative = curious = 0
        for item in recent:
            content = item.content.lower()
            if "happy" in content or "excited" in content:
                positive += 1
            elif "sad" in content or "worried" in content:
                negative += 1
            elif "curious" in content or "interested" in content:
                curious += 1
        if positive > negative:
            return "generally positive"
        if negative > positive:
            return "generally negative"
        if curious:
            return "curious and engaged"
        return "neutral"

    # ── Style ─────────────────────────────────────────────────

    def _fold_styles(
        self, items: list[MemoryItem], agent_id: str, now: float
    ) -> list[MemoryItem]:
        vector = self._style_vectors.get(agent_id, StyleVector())
        for item in items:
            # A previous fold is already part of the vector
            if item.compression != "vector":
                vector = self._apply_style(vector, item.content.lower())
        self._style_vectors[agent_id] = vector
        traits = vector.traits()
        return [
            MemoryItem(
                id=new_id("item"),
                agent_id=agent_id,
                kind=ItemKind.STYLE,
                content="Style tendencies: " + (", ".join(traits) if traits else "balanced"),
                confidence=0.8,
                timestamp=now,
                compression="vector",
                count=sum(i.count for i in items),
                first_seen=min(i.first_seen or i.timestamp for i in items),
            )
        ]

    @staticmethod
    def _apply_style(vector: StyleVector, content: str) -> StyleVector:
        if "verbose" in content or "detailed" in content:
            vector = vector.nudge(verbosity=0.1)
        elif "concise" in content or "brief" in content:
            vector = vector.nudge(verbosity=-0.1)
        if "metaphor" in content or "like" in content or "as if" in content:
            vector = vector.nudge(metaphor_affinity=0.1)
        if "formal" in content or "professional" in content:
            vector = vector.nudge(formality=0.1)
        elif "casual" in content or "friendly" in content:
            vector = vector.nudge(formality=-0.1)
        if "creative" in content or "imaginative" in content:
            vector = vector.nudge(creativity=0.1)
        if "surreal" in content or "absurd" in content:
            vector = vector.nudge(surrealism=0.1, absurdity=0.1)
        return vector

    def style_vector(self, agent_id: str) -> StyleVector:
        return self._style_vectors.get(agent_id, StyleVector())

    def set_style_vector(self, agent_id: str, vector: StyleVector) -> None:
        self._style_vectors[agent_id] = vector

    # ── History ───────────────────────────────────────────────

    def _record(self, now: float, original: int, compressed: int) -> None:
        self._history.append(CompressionRun(now, original, compressed))
        del self._history[:-_HISTORY_LIMIT]
        logger.debug("Compressed %d items into %d", original, compressed)

    def stats(self) -> dict:
        recent = self._history[-5:]
        average = sum(r.ratio for r in recent) / len(recent) if recent else 1.0
        return {
            "total_compressions": len(self._history),
            "average_compression_ratio": average,
            "style_vectors": len(self._style_vectors),
        }
