"""Keyword heuristics that turn an agent reply into memory captures.

Two outputs per reply: shared `Detection`s for the store (jokes, metaphors,
callbacks, surreal moments, themes, emotional beats) and per-agent
`MemoryItem`s for the compressor (facts, style hints, emotions, suspicions).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from chatpipes.memory.models import ItemKind, MemoryItem, MemoryKind

_JOKE_PATTERNS = [
    re.compile(r"\b(joke|funny|humou?r|laugh\w*|hilarious|pun)\b", re.I),
    re.compile(r"\b(that's what she said|dad joke|punchline)\b", re.I),
    re.compile("(\U0001F602|\U0001F604|\U0001F606|\U0001F923|haha+|lol)", re.I),
]
_METAPHOR_PATTERNS = [
    re.compile(r"\b(like a|as if|reminds me of|similar to|just like)\b", re.I),
    re.compile(r"\bmetaphor\b", re.I),
]
_REFERENCE_PATTERNS = [
    re.compile(r"\b(remember when|remember|earlier|we discussed|as mentioned|like you said)\b", re.I),
    re.compile(r"\b(previous|last time|back when)\b", re.I),
]
_SUSPICION_PATTERNS = [
    re.compile(r"\b(suspect|suspicious|i wonder|secret|hidden|mystery)\b", re.I),
]
_SURREAL_PATTERNS = [
    re.compile(r"\b(surreal|absurd|dream\w*|impossible|melting|bizarre|quantum)\b", re.I),
]
_THEME_PATTERNS = [
    re.compile(r"\b(reality|existence|consciousness|magical|time|memory)\b", re.I),
]

POSITIVE_WORDS = ("love", "amazing", "wonderful", "great", "excellent", "fantastic", "happy")
NEGATIVE_WORDS = ("hate", "terrible", "awful", "bad", "horrible", "disgusting", "worried")

TAG_CONCEPTS = ("quantum", "tea", "consciousness", "surreal", "absurd", "metaphor", "joke", "vibe")

_STYLE_MARKERS = {
    "formal": re.compile(r"\b(furthermore|therefore|indeed|regards|sincerely)\b", re.I),
    "casual": re.compile(r"\b(hey|yeah|gonna|wanna|cool|dude)\b", re.I),
    "creative": re.compile(r"\b(imagine|invent\w*|what if)\b", re.I),
    "surreal": re.compile(r"\b(surreal|absurd|dream\w*)\b", re.I),
}

_MAX_FRAGMENT = 200
_MAX_FACTS = 3


@dataclass(frozen=True)
class Detection:
    kind: MemoryKind
    text: str
    importance: float
    emotional_charge: float = 0.0
    tags: tuple[str, ...] = field(default_factory=tuple)


def split_sentences(text: str) -> list[str]:
    parts = re.split(r"(?<=[.!?])\s+|\n+", text.strip())
    return [p.strip() for p in parts if p.strip()]


def emotional_charge(text: str) -> float:
    lowered = text.lower()
    charge = 0.2 * sum(1 for w in POSITIVE_WORDS if w in lowered)
    charge -= 0.2 * sum(1 for w in NEGATIVE_WORDS if w in lowered)
    return max(-1.0, min(1.0, charge))


def extract_tags(text: str) -> tuple[str, ...]:
    lowered = text.lower()
    return tuple(c for c in TAG_CONCEPTS if c in lowered)


def _first_match(sentences: list[str], patterns: list[re.Pattern]) -> str | None:
    for sentence in sentences:
        if any(p.search(sentence) for p in patterns):
            return sentence[:_MAX_FRAGMENT]
    return None


class MemoryDetector:
    """Stateless keyword detector."""

    def detect(self, text: str) -> list[Detection]:
        sentences = split_sentences(text)
        if not sentences:
            return []
        charge = emotional_charge(text)
        found: list[Detection] = []

        checks = (
            (MemoryKind.JOKE, _JOKE_PATTERNS, 0.7),
            (MemoryKind.CALLBACK, _REFERENCE_PATTERNS, 0.6),
            (MemoryKind.METAPHOR, _METAPHOR_PATTERNS, 0.5),
            (MemoryKind.SURREAL, _SURREAL_PATTERNS, 0.7),
            (MemoryKind.THEME, _THEME_PATTERNS, 0.5),
        )
        for kind, patterns, importance in checks:
            fragment = _first_match(sentences, patterns)
            if fragment is not None:
                found.append(
                    Detection(
                        kind=kind,
                        text=fragment,
                        importance=importance,
                        emotional_charge=charge,
                        tags=extract_tags(fragment),
                    )
                )

        if abs(charge) >= 0.2:
            found.append(
                Detection(
                    kind=MemoryKind.EMOTIONAL,
                    text=sentences[0][:_MAX_FRAGMENT],
                    importance=min(1.0, 0.4 + abs(charge)),
                    emotional_charge=charge,
                    tags=extract_tags(text),
                )
            )
        return found

    def observe(self, agent_id: str, text: str, timestamp: float) -> list[MemoryItem]:
        """Working-memory items describing what this agent just said."""
        sentences = split_sentences(text)
        if not sentences:
            return []
        items: list[MemoryItem] = []

        hints = self._style_hints(text)
        if hints:
            items.append(
                MemoryItem.create(
                    agent_id, ItemKind.STYLE, "style: " + ", ".join(hints), 0.8, timestamp
                )
            )

        charge = emotional_charge(text)
        if charge or "?" in text:
            if charge > 0:
                mood = "happy"
            elif charge < 0:
                mood = "worried"
            else:
                mood = "curious"
            items.append(
                MemoryItem.create(
                    agent_id,
                    ItemKind.EMOTION,
                    f"{mood}: {sentences[0][:_MAX_FRAGMENT]}",
                    0.5 + abs(charge) / 2,
                    timestamp,
                )
            )

        suspicion = _first_match(sentences, _SUSPICION_PATTERNS)
        if suspicion is not None:
            items.append(
                MemoryItem.create(agent_id, ItemKind.SUSPICION, suspicion, 0.6, timestamp)
            )

        joke = _first_match(sentences, _JOKE_PATTERNS)
        if joke is not None:
            items.append(MemoryItem.create(agent_id, ItemKind.JOKE, joke, 0.7, timestamp))

        callback = _first_match(sentences, _REFERENCE_PATTERNS)
        if callback is not None:
            items.append(MemoryItem.create(agent_id, ItemKind.CALLBACK, callback, 0.6, timestamp))

        facts = [s for s in sentences if not s.endswith("?") and len(s.split()) > 5]
        for fact in facts[:_MAX_FACTS]:
            items.append(
                MemoryItem.create(
                    agent_id, ItemKind.FACT, fact[:_MAX_FRAGMENT], 0.6, timestamp,
                    tags=extract_tags(fact),
                )
            )
        return items

    def _style_hints(self, text: str) -> list[str]:
        hints = []
        words = len(text.split())
        if words > 80:
            hints.append("verbose")
        elif words < 15:
            hints.append("concise")
        if any(p.search(text) for p in _METAPHOR_PATTERNS):
            hints.append("metaphor")
        for name, pattern in _STYLE_MARKERS.items():
            if pattern.search(text):
                hints.append(name)
        return hints
