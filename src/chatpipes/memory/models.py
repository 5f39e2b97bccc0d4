"""Value types for the shared memory subsystem.

Records, motifs and triggers are frozen: the store swaps whole values under
its lock, so a reader sees either the old state or the new one.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class MemoryKind(str, Enum):
    JOKE = "joke"
    METAPHOR = "metaphor"
    MOMENT = "moment"
    THEME = "theme"
    CALLBACK = "callback"
    SURREAL = "surreal"
    EMOTIONAL = "emotional"


class MotifKind(str, Enum):
    JOKE = "joke"
    THEME = "theme"
    SURREAL = "surreal"


class ItemKind(str, Enum):
    """Kinds of per-agent working memory fed to the compressor."""

    FACT = "fact"
    JOKE = "joke"
    CALLBACK = "callback"
    EMOTION = "emotion"
    STYLE = "style"
    SUSPICION = "suspicion"
    METAPHOR = "metaphor"
    MOMENT = "moment"


_RECORD_TO_ITEM = {
    MemoryKind.JOKE: ItemKind.JOKE,
    MemoryKind.CALLBACK: ItemKind.CALLBACK,
    MemoryKind.EMOTIONAL: ItemKind.EMOTION,
    MemoryKind.METAPHOR: ItemKind.METAPHOR,
    MemoryKind.THEME: ItemKind.FACT,
    MemoryKind.MOMENT: ItemKind.MOMENT,
    MemoryKind.SURREAL: ItemKind.MOMENT,
}


@dataclass(frozen=True)
class MemoryRecord:
    id: str
    kind: MemoryKind
    text: str
    participant_ids: frozenset[str]
    created_at: float
    importance: float
    emotional_charge: float
    strength: float
    last_referenced_at: float
    # Point up to which decay has already been applied
    decayed_at: float
    reference_count: int = 0
    tags: frozenset[str] = frozenset()
    context: str = ""
    active: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "importance", _clamp(self.importance))
        object.__setattr__(self, "strength", _clamp(self.strength))
        object.__setattr__(self, "emotional_charge", _clamp(self.emotional_charge, -1.0, 1.0))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "text": self.text,
            "participantIds": sorted(self.participant_ids),
            "createdAt": self.created_at,
            "importance": self.importance,
            "emotionalCharge": self.emotional_charge,
            "referenceCount": self.reference_count,
            "lastReferencedAt": self.last_referenced_at,
            "tags": sorted(self.tags),
            "strength": self.strength,
            "active": self.active,
        }


@dataclass(frozen=True)
class RunningMotif:
    """A recurring joke, theme or surreal moment derived from a record."""

    id: str
    kind: MotifKind
    name: str
    record_id: str
    participant_ids: frozenset[str]
    created_at: float
    strength: float
    last_referenced_at: float
    decayed_at: float
    variations: tuple[str, ...] = ()
    usage_count: int = 1
    tone: str = "neutral"
    tags: frozenset[str] = frozenset()
    active: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "strength", _clamp(self.strength))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "name": self.name,
            "recordId": self.record_id,
            "participantIds": sorted(self.participant_ids),
            "createdAt": self.created_at,
            "variations": list(self.variations),
            "usageCount": self.usage_count,
            "strength": self.strength,
            "lastReferencedAt": self.last_referenced_at,
            "tone": self.tone,
            "tags": sorted(self.tags),
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunningMotif:
        last = data.get("lastReferencedAt", data.get("createdAt", 0.0))
        return cls(
            id=data["id"],
            kind=MotifKind(data["kind"]),
            name=data["name"],
            record_id=data.get("recordId", ""),
            participant_ids=frozenset(data.get("participantIds", [])),
            created_at=data.get("createdAt", 0.0),
            strength=data.get("strength", 0.0),
            last_referenced_at=last,
            decayed_at=last,
            variations=tuple(data.get("variations", [])),
            usage_count=data.get("usageCount", 1),
            tone=data.get("tone", "neutral"),
            tags=frozenset(data.get("tags", [])),
            active=data.get("active", True),
        )


@dataclass(frozen=True)
class CallbackTrigger:
    """Relation to a record worth calling back to. Does not own the record."""

    id: str
    memory_id: str
    trigger_phrase: str
    frequency: float
    success_count: int = 0
    failure_count: int = 0
    last_triggered_at: float = 0.0


@dataclass(frozen=True)
class InjectionSuggestion:
    kind: str
    content: str
    priority: float
    participants: frozenset[str]
    source_id: str
    trigger_phrase: str = ""


@dataclass(frozen=True)
class MemoryItem:
    """One entry of an agent's working memory, before or after compression."""

    id: str
    agent_id: str
    kind: ItemKind
    content: str
    confidence: float
    timestamp: float
    compression: str = "raw"
    count: int = 1
    first_seen: float | None = None
    mood: str | None = None
    tags: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", _clamp(self.confidence))

    @classmethod
    def create(
        cls,
        agent_id: str,
        kind: ItemKind,
        content: str,
        confidence: float,
        timestamp: float,
        **kwargs: Any,
    ) -> MemoryItem:
        return cls(
            id=new_id("item"),
            agent_id=agent_id,
            kind=kind,
            content=content,
            confidence=confidence,
            timestamp=timestamp,
            **kwargs,
        )

    @classmethod
    def from_record(cls, record: MemoryRecord, agent_id: str) -> MemoryItem:
        return cls(
            id=record.id,
            agent_id=agent_id,
            kind=_RECORD_TO_ITEM[record.kind],
            content=record.text,
            confidence=record.importance,
            timestamp=record.created_at,
            tags=tuple(sorted(record.tags)),
        )

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "agentId": self.agent_id,
            "kind": self.kind.value,
            "content": self.content,
            "confidence": self.confidence,
            "timestamp": self.timestamp,
            "compression": self.compression,
            "count": self.count,
            "tags": list(self.tags),
        }
        if self.first_seen is not None:
            data["firstSeen"] = self.first_seen
        if self.mood:
            data["mood"] = self.mood
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryItem:
        return cls(
            id=data["id"],
            agent_id=data["agentId"],
            kind=ItemKind(data["kind"]),
            content=data["content"],
            confidence=data["confidence"],
            timestamp=data["timestamp"],
            compression=data.get("compression", "raw"),
            count=data.get("count", 1),
            first_seen=data.get("firstSeen"),
            mood=data.get("mood"),
            tags=tuple(data.get("tags", [])),
        )


@dataclass(frozen=True)
class StyleVector:
    """Seven learned style dimensions. Scalars are in [0, 1]."""

    verbosity: float = 0.5
    metaphor_affinity: float = 0.5
    emotional_tone: str = "neutral"
    formality: float = 0.5
    creativity: float = 0.5
    absurdity: float = 0.5
    surrealism: float = 0.5

    def nudge(self, **deltas: float) -> StyleVector:
        changes = {name: _clamp(getattr(self, name) + delta) for name, delta in deltas.items()}
        return replace(self, **changes)

    def traits(self) -> list[str]:
        traits = []
        if self.verbosity > 0.7:
            traits.append("verbose")
        if self.verbosity < 0.3:
            traits.append("concise")
        if self.metaphor_affinity > 0.7:
            traits.append("metaphorical")
        if self.formality > 0.7:
            traits.append("formal")
        if self.formality < 0.3:
            traits.append("casual")
        if self.creativity > 0.7:
            traits.append("creative")
        if self.surrealism > 0.7:
            traits.append("surreal")
        return traits

    def to_dict(self) -> dict[str, Any]:
        return {
            "verbosity": self.verbosity,
            "metaphorAffinity": self.metaphor_affinity,
            "emotionalTone": self.emotional_tone,
            "formality": self.formality,
            "creativity": self.creativity,
            "absurdity": self.absurdity,
            "surrealism": self.surrealism,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StyleVector:
        return cls(
            verbosity=data.get("verbosity", 0.5),
            metaphor_affinity=data.get("metaphorAffinity", 0.5),
            emotional_tone=data.get("emotionalTone", "neutral"),
            formality=data.get("formality", 0.5),
            creativity=data.get("creativity", 0.5),
            absurdity=data.get("absurdity", 0.5),
            surrealism=data.get("surrealism", 0.5),
        )


@dataclass(frozen=True)
class MemorySnapshot:
    """Budget-constrained view of one agent's memory. Replaced, never mutated."""

    agent_id: str
    motifs: dict[str, RunningMotif]
    recent_memories: tuple[MemoryItem, ...]
    persona_summary: str
    style_vector: StyleVector
    size_bytes: int
    compression_ratio: float
    last_updated: float
    budget_bytes: int = 0
    dropped: int = field(default=0, compare=False)

    def content_dict(self) -> dict[str, Any]:
        """The part of the snapshot that counts against the byte budget."""
        return {
            "motifs": {mid: m.to_dict() for mid, m in self.motifs.items()},
            "recentMemories": [item.to_dict() for item in self.recent_memories],
            "personaSummary": self.persona_summary,
            "styleVector": self.style_vector.to_dict(),
        }

    def to_dict(self) -> dict[str, Any]:
        data = {"agentId": self.agent_id}
        data.update(self.content_dict())
        data["metadata"] = {
            "totalSize": self.size_bytes,
            "memoryCount": len(self.recent_memories),
            "motifCount": len(self.motifs),
            "compressionRatio": self.compression_ratio,
            "lastUpdated": self.last_updated,
        }
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemorySnapshot:
        metadata = data.get("metadata", {})
        return cls(
            agent_id=data["agentId"],
            motifs={
                mid: RunningMotif.from_dict(m) for mid, m in data.get("motifs", {}).items()
            },
            recent_memories=tuple(
                MemoryItem.from_dict(item) for item in data.get("recentMemories", [])
            ),
            persona_summary=data.get("personaSummary", ""),
            style_vector=StyleVector.from_dict(data.get("styleVector", {})),
            size_bytes=metadata.get("totalSize", 0),
            compression_ratio=metadata.get("compressionRatio", 0.0),
            last_updated=metadata.get("lastUpdated", 0.0),
        )

