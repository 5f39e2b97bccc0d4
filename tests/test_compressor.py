"""Tests for type-aware memory compression."""

import pytest

from chatpipes.clock import ManualClock
from chatpipes.memory.compressor import MemoryCompressor, detect_mood, similarity
from chatpipes.memory.models import ItemKind, MemoryItem


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def compressor(clock: ManualClock) -> MemoryCompressor:
    return MemoryCompressor(clock=clock)


def _item(kind, content, confidence=0.6, ts=0.0, agent="A"):
    return MemoryItem.create(agent, kind, content, confidence, 1_700_000_000.0 + ts)


class TestFacts:
    def test_near_duplicate_facts_are_merged(self, compressor: MemoryCompressor):
        facts = [
            _item(ItemKind.FACT, "Alice keeps teapots inside bookshelf cabinets", 0.6, 1),
            _item(ItemKind.FACT, "Alice keeps teapots inside bookshelf drawers", 0.6, 2),
            _item(ItemKind.FACT, "Alice keeps teapots inside bookshelf cabinets too", 0.6, 3),
        ]
        out = compressor.compress(facts)
        assert len(out) == 1
        merged = out[0]
        assert merged.compression == "aggregated"
        assert merged.count == 3
        assert merged.confidence == pytest.approx(0.9)
        assert "Alice keeps teapots inside bookshelf cabinets" in merged.content

    def test_few_facts_pass_through(self, compressor: MemoryCompressor):
        facts = [
            _item(ItemKind.FACT, "Alice keeps teapots inside bookshelf cabinets"),
            _item(ItemKind.FACT, "Alice keeps teapots inside bookshelf drawers"),
        ]
        out = compressor.compress(facts)
        assert out == facts

    def test_dissimilar_facts_stay_separate(self, compressor: MemoryCompressor):
        facts = [
            _item(ItemKind.FACT, "Alice keeps teapots inside bookshelf cabinets"),
            _item(ItemKind.FACT, "Bob studies volcanic geology every weekend"),
            _item(ItemKind.FACT, "Nobody remembers what happened yesterday evening"),
        ]
        out = compressor.compress(facts)
        assert len(out) == 3
        assert all(i.compression == "raw" for i in out)


class TestJokes:
    def test_reused_joke_kept_verbatim(self, compressor: MemoryCompressor):
        jokes = [
            _item(ItemKind.JOKE, "the teapot dreams about funny electric sheep", 0.6, 1),
            _item(ItemKind.JOKE, "the teapot dreams about funny electric sheep", 0.6, 5),
        ]
        out = compressor.compress(jokes)
        assert len(out) == 1
        kept = out[0]
        assert kept.content == "the teapot dreams about funny electric sheep"
        assert kept.compression == "verbatim"
        assert kept.count == 2
        assert kept.confidence == pytest.approx(0.8)
        assert kept.mood == "funny"
        assert kept.timestamp == jokes[1].timestamp

    def test_single_joke_untouched(self, compressor: MemoryCompressor):
        joke = _item(ItemKind.JOKE, "a lone pun")
        assert compressor.compress([joke]) == [joke]


class TestEmotions:
    def test_emotions_roll_into_one(self, compressor: MemoryCompressor):
        emotions = [
            _item(ItemKind.EMOTION, "happy: what a day", 0.8, 10),
            _item(ItemKind.EMOTION, "happy: lovely", 0.6, 5),
            _item(ItemKind.EMOTION, "worried: hmm", 0.4, 1),
        ]
        out = compressor.compress(emotions)
        assert len(out) == 1
        rolled = out[0]
        weights = [1, 1 / 2, 1 / 3]
        average = (0.8 * weights[0] + 0.6 * weights[1] + 0.4 * weights[2]) / sum(weights)
        assert rolled.confidence == pytest.approx(average - 0.1)
        assert rolled.content == "Emotional state: generally positive"
        assert rolled.compression == "rolling"
        assert rolled.count == 3


class TestStyle:
    def test_style_folds_into_vector(self, compressor: MemoryCompressor):
        styles = [
            _item(ItemKind.STYLE, "style: concise, formal"),
            _item(ItemKind.STYLE, "style: concise, surreal"),
        ]
        out = compressor.compress(styles)
        assert len(out) == 1
        assert out[0].compression == "vector"
        vector = compressor.style_vector("A")
        assert vector.verbosity == pytest.approx(0.3)
        assert vector.formality == pytest.approx(0.6)
        assert vector.surrealism == pytest.approx(0.6)
        assert vector.absurdity == pytest.approx(0.6)

    def test_folded_summary_is_not_reapplied(self, compressor: MemoryCompressor):
        first = compressor.compress([_item(ItemKind.STYLE, "style: concise")])
        compressor.compress(first)
        assert compressor.style_vector("A").verbosity == pytest.approx(0.4)

    def test_vectors_are_per_agent(self, compressor: MemoryCompressor):
        compressor.compress([_item(ItemKind.STYLE, "style: verbose", agent="A")])
        assert compressor.style_vector("B").verbosity == 0.5


class TestSuspicions:
    def test_suspicions_merge_at_lower_threshold(self, compressor: MemoryCompressor):
        out = compressor.compress(
            [
                _item(ItemKind.SUSPICION, "I suspect the kettle hides secret letters"),
                _item(ItemKind.SUSPICION, "I suspect the kettle hides secret letters"),
            ]
        )
        assert len(out) == 1
        assert out[0].compression == "aggregated"


class TestHelpers:
    def test_similarity_ignores_short_words(self):
        assert similarity("a an the", "of to in") == 0.0
        assert similarity("teapot kettle", "kettle teapot") == 1.0

    def test_detect_mood(self):
        assert detect_mood("That was hilarious") == "funny"
        assert detect_mood("weird vibes") == "strange"
        assert detect_mood("on existence") == "philosophical"
        assert detect_mood("plain") is None

    def test_history_is_bounded(self, compressor: MemoryCompressor):
        for _ in range(15):
            compressor.compress([_item(ItemKind.MOMENT, "x")])
        assert compressor.stats()["total_compressions"] == 10

    def test_other_kinds_pass_through(self, compressor: MemoryCompressor):
        moment = _item(ItemKind.METAPHOR, "time is a river")
        assert compressor.compress([moment]) == [moment]
