"""Tests for prompt synthesis."""

import pytest

from chatpipes.dialogue.context import build_prompt, memory_block, select_exchanges
from chatpipes.dialogue.models import Exchange
from chatpipes.memory.models import InjectionSuggestion, MemorySnapshot, StyleVector

NAMES = {"A": "Alice", "B": "Bob"}


def _history(n):
    out = []
    for i in range(n):
        agent = "A" if i % 2 == 0 else "B"
        out.append(Exchange(agent, NAMES[agent], f"message {i}", i // 2 + 1, float(i)))
    return out


def _suggestion(content, priority=0.5):
    return InjectionSuggestion("callback", content, priority, frozenset({"A", "B"}), "memory-1")


class TestSelect:
    def test_excludes_own_exchanges(self):
        _, verbatim = select_exchanges(_history(6), "A", "all", 3, 2)
        assert all(e.agent_id == "B" for e in verbatim)
        assert len(verbatim) == 3

    def test_recent_window(self):
        summarized, verbatim = select_exchanges(_history(20), "A", "recent", 3, 2)
        assert summarized == []
        assert [e.message for e in verbatim] == ["message 15", "message 17", "message 19"]

    def test_window_scales_with_participants(self):
        history = [Exchange(a, a, f"m{i}", 1, float(i)) for i, a in enumerate("ABCBCBC")]
        _, verbatim = select_exchanges(history, "A", "recent", 2, 3)
        assert len(verbatim) == 4

    def test_weighted_skips_oldest(self):
        summarized, verbatim = select_exchanges(_history(20), "A", "weighted", 3, 2)
        # 10 exchanges from B: 3 recent, 3 oldest skipped, 4 summarized
        assert [e.message for e in verbatim] == ["message 15", "message 17", "message 19"]
        assert [e.message for e in summarized] == [
            "message 7",
            "message 9",
            "message 11",
            "message 13",
        ]

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            select_exchanges(_history(2), "A", "random", 3, 2)


class TestMemoryBlock:
    def test_empty(self):
        assert memory_block([], None) == ""

    def test_persona_and_top_three(self):
        snapshot = MemorySnapshot(
            agent_id="A",
            motifs={},
            recent_memories=(),
            persona_summary="humorous",
            style_vector=StyleVector(),
            size_bytes=0,
            compression_ratio=0.0,
            last_updated=0.0,
        )
        block = memory_block([_suggestion(f"s{i}") for i in range(5)], snapshot)
        lines = block.splitlines()
        assert lines[0] == "[Shared memory]"
        assert lines[1] == "Your conversational persona so far: humorous."
        assert lines[2:] == ["- s0", "- s1", "- s2"]


class TestBuildPrompt:
    def test_opening_turn(self):
        prompt = build_prompt([], "A", strategy="recent", window=3, participant_names=NAMES)
        assert prompt == "Please start the conversation with an engaging topic."

    def test_opening_turn_with_topic(self):
        prompt = build_prompt(
            [], "A", strategy="recent", window=3, participant_names=NAMES, topic="teapots"
        )
        assert prompt == "Please start the conversation about this topic: teapots"

    def test_reply_names_speaker_and_ends_with_last_message(self):
        prompt = build_prompt(
            _history(4), "A", strategy="recent", window=3, participant_names=NAMES
        )
        assert prompt.startswith(
            "You are in a conversation with Bob. In reply to what Bob just said:"
        )
        assert "Bob: message 1" in prompt
        assert prompt.endswith("message 3")

    def test_weighted_adds_snippets(self):
        history = _history(20)
        prompt = build_prompt(history, "A", strategy="weighted", window=3, participant_names=NAMES)
        assert "Earlier in the conversation:\n- Bob: message 7" in prompt

    def test_long_snippet_is_shortened(self):
        history = [Exchange("B", "Bob", "word " * 100, 1, float(i)) for i in range(10)]
        prompt = build_prompt(history, "A", strategy="weighted", window=1, participant_names=NAMES)
        snippet_lines = [line for line in prompt.splitlines() if line.startswith("- Bob: ")]
        assert snippet_lines
        assert all(len(line) == len("- Bob: ") + 80 for line in snippet_lines)

    def test_memory_block_appended(self):
        prompt = build_prompt(
            _history(2),
            "A",
            strategy="recent",
            window=3,
            participant_names=NAMES,
            suggestions=[_suggestion("remember the teapot")],
        )
        assert prompt.endswith("[Shared memory]\n- remember the teapot")
