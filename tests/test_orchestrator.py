"""Tests for the turn orchestrator state machine."""

import random

import pytest

from chatpipes.agents.scripted import ScriptedAgent
from chatpipes.clock import ManualClock
from chatpipes.config import DialogueConfig, MemoryConfig
from chatpipes.dialogue.models import DialogueStatus, InterjectionKind, Participant, Priority
from chatpipes.dialogue.orchestrator import TurnOrchestrator
from chatpipes.errors import (
    CollaboratorFailure,
    InvalidStateError,
    NoActiveParticipantsError,
    RoundLimitExceeded,
)
from chatpipes.events import EventType
from chatpipes.memory.capper import MemoryCapper
from chatpipes.memory.compressor import MemoryCompressor
from chatpipes.memory.maintenance import SnapshotMaintainer
from chatpipes.memory.models import MemoryKind
from chatpipes.memory.store import SharedMemoryStore

QUIET = dict(callback_frequency=0.0, joke_frequency=0.0, theme_frequency=0.0, surreal_frequency=0.0)


def _store(**memory):
    settings = {**QUIET, **memory}
    return SharedMemoryStore(MemoryConfig(**settings), clock=ManualClock(), rng=random.Random(7))


def _orchestrator(agents, store=None, sleep=None, maintainer=None, **dialogue):
    dialogue.setdefault("turn_delay_ms", 0)
    store = store or _store()
    participants = [Participant(id=a.name, name=a.name.title(), agent=a) for a in agents]
    kwargs = {"config": DialogueConfig(**dialogue), "maintainer": maintainer}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return TurnOrchestrator(participants, store, **kwargs)


def _pair(**dialogue):
    a = ScriptedAgent("A", ["hello from A"])
    b = ScriptedAgent("B", ["hello from B"])
    return a, b, _orchestrator([a, b], **dialogue)


class FullDiskRepository:
    def save(self, agent_id, blob):
        raise OSError("disk full")

    def load(self, agent_id):
        return None


class TestConstruction:
    def test_requires_participants(self):
        with pytest.raises(ValueError):
            TurnOrchestrator([], _store())

    def test_rejects_duplicate_ids(self):
        with pytest.raises(ValueError):
            _orchestrator([ScriptedAgent("A"), ScriptedAgent("A")])

    def test_initial_state(self):
        _, _, orch = _pair()
        state = orch.state()
        assert state.status is DialogueStatus.IDLE
        assert (state.round, state.turn_index, state.current_agent_index) == (0, 0, 0)
        assert state.history == ()
        assert not state.is_running


class TestTurns:
    @pytest.mark.asyncio
    async def test_round_robin(self):
        _, _, orch = _pair(max_rounds=3)
        history = await orch.run_until_stopped()

        assert [e.agent_id for e in history] == ["A", "B"] * 3
        assert [e.round for e in history] == [1, 1, 2, 2, 3, 3]
        assert orch.status is DialogueStatus.COMPLETED
        assert orch.round == 3
        assert orch.turn_index == 6

    @pytest.mark.asyncio
    async def test_round_is_monotonic_and_bounded(self):
        _, _, orch = _pair(max_rounds=4)
        rounds = []
        with pytest.raises(RoundLimitExceeded):
            while True:
                await orch.next_turn()
                rounds.append(orch.round)
        assert rounds == sorted(rounds)
        assert max(rounds) == 4
        assert all(r <= 4 for r in rounds)

    @pytest.mark.asyncio
    async def test_turn_after_completion_raises(self):
        _, _, orch = _pair(max_rounds=1)
        await orch.run_until_stopped()
        with pytest.raises(RoundLimitExceeded):
            await orch.next_turn()
        assert len(orch.history) == 2

    @pytest.mark.asyncio
    async def test_first_prompt_is_opener(self):
        a, b, orch = _pair(max_rounds=1, topic="teapots")
        await orch.run_until_stopped()
        assert a.prompts[0] == "Please start the conversation about this topic: teapots"
        assert b.prompts[0].startswith("You are in a conversation with A.")
        assert b.prompts[0].endswith("hello from A")

    @pytest.mark.asyncio
    async def test_exchange_records_prompt(self):
        a, _, orch = _pair()
        exchange = await orch.next_turn()
        assert exchange.prompt == a.prompts[0]
        assert exchange.message == "hello from A"
        assert exchange.agent_name == "A"

    @pytest.mark.asyncio
    async def test_turn_delay(self):
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        a, b = ScriptedAgent("A"), ScriptedAgent("B")
        orch = _orchestrator([a, b], sleep=fake_sleep, max_rounds=1, turn_delay_ms=250)
        await orch.run_until_stopped()
        # No delay after the turn that completes the dialogue
        assert sleeps == [0.25]

    @pytest.mark.asyncio
    async def test_events(self):
        _, _, orch = _pair(max_rounds=1)
        seen = []
        orch.events.subscribe(lambda e: seen.append(e.type))
        await orch.run_until_stopped()

        dialogue_events = [t for t in seen if not t.value.startswith(("memor", "motif"))]
        assert dialogue_events == [
            EventType.DIALOGUE_STARTED,
            EventType.TURN_START,
            EventType.TURN_END,
            EventType.TURN_START,
            EventType.TURN_END,
            EventType.DIALOGUE_COMPLETED,
        ]


class TestPauseResume:
    @pytest.mark.asyncio
    async def test_paused_turn_raises_and_state_is_kept(self):
        _, _, orch = _pair()
        await orch.next_turn()
        orch.pause()

        with pytest.raises(InvalidStateError):
            await orch.next_turn()
        assert orch.state().is_paused
        assert (orch.round, orch.turn_index) == (0, 1)

        orch.resume()
        exchange = await orch.next_turn()
        assert exchange.agent_id == "B"
        assert (orch.round, orch.turn_index) == (1, 2)

    def test_invalid_transitions(self):
        _, _, orch = _pair()
        with pytest.raises(InvalidStateError):
            orch.pause()
        with pytest.raises(InvalidStateError):
            orch.resume()

    @pytest.mark.asyncio
    async def test_run_until_stopped_waits_while_paused(self):
        sleeps = []
        orch = None

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            orch.resume()

        def pausing_reply(prompt):
            if not sleeps:
                orch.pause()
            return "thinking"

        orch = _orchestrator(
            [ScriptedAgent("A", pausing_reply), ScriptedAgent("B")],
            sleep=fake_sleep,
            max_rounds=2,
        )
        history = await orch.run_until_stopped()
        assert len(history) == 4
        assert sleeps == [1.0]
        assert orch.status is DialogueStatus.COMPLETED


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_is_idempotent_and_final(self):
        _, _, orch = _pair()
        await orch.next_turn()
        seen = []
        orch.events.subscribe(seen.append, [EventType.DIALOGUE_STOPPED])

        orch.stop()
        orch.stop()
        assert orch.status is DialogueStatus.STOPPED
        assert len(seen) == 1
        with pytest.raises(InvalidStateError):
            await orch.next_turn()
        with pytest.raises(InvalidStateError):
            orch.interject("too late")
        assert await orch.run_until_stopped() == list(orch.history)

    @pytest.mark.asyncio
    async def test_stop_does_not_complete(self):
        _, _, orch = _pair(max_rounds=1)
        await orch.next_turn()
        orch.stop()
        assert orch.status is DialogueStatus.STOPPED

    @pytest.mark.asyncio
    async def test_stop_during_last_turn_stays_stopped(self):
        def reply(prompt):
            orch.stop()
            return "last words"

        orch = _orchestrator([ScriptedAgent("A", reply)], max_rounds=1)
        seen = []
        orch.events.subscribe(seen.append)

        await orch.next_turn()
        assert orch.status is DialogueStatus.STOPPED
        with pytest.raises(InvalidStateError):
            await orch.next_turn()

        assert orch.status is DialogueStatus.STOPPED
        assert EventType.DIALOGUE_COMPLETED not in [e.type for e in seen]
        assert [e.message for e in orch.history] == ["last words"]


class TestInterjections:
    @pytest.mark.asyncio
    async def test_targeted_interjection_waits_for_its_target(self):
        a = ScriptedAgent("A", ["hello from A"])
        b = ScriptedAgent("B", ["hello from B"])
        orch = _orchestrator([a, b])
        queued = orch.interject("focus on tea", kind=InterjectionKind.DIRECTION, target="B")

        first = await orch.next_turn()
        assert first.applied_interjection_id is None
        assert "focus on tea" not in a.prompts[0]
        assert orch.pending_interjections() == (queued,)

        second = await orch.next_turn()
        assert second.applied_interjection_id == queued.id
        assert b.prompts[0].endswith(
            "\n\nDirection: focus on tea\n\nPlease focus your response on this aspect."
        )
        assert orch.pending_interjections() == ()

        await orch.next_turn()
        await orch.next_turn()
        assert "focus on tea" not in b.prompts[1]

    @pytest.mark.asyncio
    async def test_one_interjection_per_turn_by_priority(self):
        a, _, orch = _pair()
        orch.interject("low one", priority=Priority.LOW)
        high = orch.interject("high one", priority=Priority.HIGH)

        exchange = await orch.next_turn()
        assert exchange.applied_interjection_id == high.id
        assert "high one" in a.prompts[0]
        assert "low one" not in a.prompts[0]
        assert len(orch.pending_interjections()) == 1

    def test_unknown_target_rejected(self):
        _, _, orch = _pair()
        with pytest.raises(ValueError):
            orch.interject("hi", target="Z")

    @pytest.mark.asyncio
    async def test_interjection_allowed_while_paused(self):
        _, _, orch = _pair()
        await orch.next_turn()
        orch.pause()
        assert orch.interject("noted").text == "noted"


class TestFailures:
    @pytest.mark.asyncio
    async def test_collaborator_failure_stops_dialogue(self):
        a = ScriptedAgent("A", ["fine"])
        b = ScriptedAgent("B", ["never"], fail_on=1)
        orch = _orchestrator([a, b])
        errors = []
        orch.events.subscribe(errors.append, [EventType.ERROR])
        orch.interject("for B", target="B")

        await orch.next_turn()
        with pytest.raises(CollaboratorFailure) as info:
            await orch.next_turn()

        assert info.value.agent_id == "B"
        assert orch.status is DialogueStatus.STOPPED
        assert [e.message for e in orch.history] == ["fine"]
        assert orch.pending_interjections() == ()
        assert errors[0].payload["agent_id"] == "B"
        with pytest.raises(InvalidStateError):
            await orch.next_turn()

    @pytest.mark.asyncio
    async def test_failure_propagates_from_run(self):
        orch = _orchestrator([ScriptedAgent("A", fail_on=1), ScriptedAgent("B")])
        with pytest.raises(CollaboratorFailure):
            await orch.run_until_stopped()
        assert orch.history == ()


class TestInactiveParticipants:
    @pytest.mark.asyncio
    async def test_inactive_are_skipped(self):
        agents = [ScriptedAgent(n) for n in "ABC"]
        orch = _orchestrator(agents)
        orch.set_active("B", False)

        speakers = [(await orch.next_turn()).agent_id for _ in range(3)]
        assert speakers == ["A", "C", "A"]
        assert [e.round for e in orch.history] == [1, 1, 2]

    @pytest.mark.asyncio
    async def test_skipping_can_be_disabled(self):
        agents = [ScriptedAgent(n) for n in "AB"]
        orch = _orchestrator(agents, skip_inactive_agents=False)
        orch.set_active("B", False)
        speakers = [(await orch.next_turn()).agent_id for _ in range(2)]
        assert speakers == ["A", "B"]

    @pytest.mark.asyncio
    async def test_skip_crossing_last_round_completes(self):
        agents = [ScriptedAgent(n) for n in "AB"]
        orch = _orchestrator(agents, max_rounds=1)
        await orch.next_turn()
        orch.set_active("B", False)
        with pytest.raises(RoundLimitExceeded):
            await orch.next_turn()
        assert orch.status is DialogueStatus.COMPLETED
        assert orch.round == 1

    @pytest.mark.asyncio
    async def test_no_active_participants(self):
        agents = [ScriptedAgent(n) for n in "AB"]
        orch = _orchestrator(agents)
        orch.set_active("A", False)
        orch.set_active("B", False)
        with pytest.raises(NoActiveParticipantsError):
            await orch.next_turn()
        assert orch.history == ()

    @pytest.mark.asyncio
    async def test_interjection_for_skipped_agent_persists(self):
        agents = [ScriptedAgent(n) for n in "ABC"]
        orch = _orchestrator(agents)
        orch.set_active("B", False)
        queued = orch.interject("for B", target="B")

        await orch.next_turn()
        await orch.next_turn()
        assert orch.pending_interjections() == (queued,)

    @pytest.mark.asyncio
    async def test_interjection_for_skipped_agent_expires(self):
        agents = [ScriptedAgent(n) for n in "ABC"]
        orch = _orchestrator(agents, interjection_skip_policy="expire")
        orch.set_active("B", False)
        for_b = orch.interject("for B", target="B")
        broadcast = orch.interject("for everyone")

        await orch.next_turn()
        assert orch.pending_interjections() == (for_b,)
        assert orch.history[0].applied_interjection_id == broadcast.id
        await orch.next_turn()
        assert orch.pending_interjections() == ()


class TestMemoryWriteBack:
    @pytest.mark.asyncio
    async def test_replies_are_captured(self):
        store = _store()
        a = ScriptedAgent("A", ["That joke about the kettle was hilarious."])
        orch = _orchestrator([a, ScriptedAgent("B")], store=store)
        await orch.next_turn()

        kinds = {r.kind for r in store.records_for(["A"])}
        assert MemoryKind.JOKE in kinds
        assert len(store.motifs_for("A")) == 1
        assert store.agent_items("A")

    @pytest.mark.asyncio
    async def test_used_callback_is_reinforced(self):
        store = _store(callback_frequency=1.0)
        record = store.capture(
            MemoryKind.MOMENT, "The teapot orchestra played jazz", ["A", "B"], 0.8
        )
        a = ScriptedAgent("A", ["The teapot is back."])
        orch = _orchestrator([a, ScriptedAgent("B")], store=store)
        await orch.next_turn()

        assert "The teapot orchestra played jazz" in a.prompts[0]
        updated = store.get_record(record.id)
        assert updated.reference_count == 1
        assert updated.strength == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_ignored_callback_is_counted_not_refreshed(self):
        store = _store(callback_frequency=1.0)
        record = store.capture(
            MemoryKind.MOMENT, "The teapot orchestra played jazz", ["A", "B"], 0.8
        )
        orch = _orchestrator([ScriptedAgent("A", ["Unrelated."]), ScriptedAgent("B")], store=store)
        await orch.next_turn()

        updated = store.get_record(record.id)
        assert updated.reference_count == 1
        assert updated.strength == pytest.approx(0.8)
        assert store.triggers_for(record.id)[0].failure_count == 1

    @pytest.mark.asyncio
    async def test_snapshots_refresh_each_round(self):
        store = _store()
        clock = store.clock
        maintainer = SnapshotMaintainer(
            store, MemoryCompressor(clock=clock), MemoryCapper(clock=clock)
        )
        orch = _orchestrator(
            [ScriptedAgent("A", ["I love this teapot, it is wonderful."]), ScriptedAgent("B")],
            store=store,
            maintainer=maintainer,
        )
        await orch.next_turn()
        assert maintainer.capper.latest("A") is None

        await orch.next_turn()
        assert maintainer.capper.latest("A") is not None
        assert maintainer.capper.latest("B") is not None

        await orch.next_turn()
        assert "Your conversational persona so far" in orch.history[-1].prompt

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_dialogue_running(self):
        store = _store()
        clock = store.clock
        maintainer = SnapshotMaintainer(
            store, MemoryCompressor(clock=clock), MemoryCapper(clock=clock), FullDiskRepository()
        )
        orch = _orchestrator([ScriptedAgent("A"), ScriptedAgent("B")], store=store, maintainer=maintainer)
        seen = []
        orch.events.subscribe(seen.append, [EventType.TURN_END, EventType.ERROR])

        await orch.next_turn()
        await orch.next_turn()

        assert orch.status is DialogueStatus.RUNNING
        assert len(orch.history) == 2
        assert [e.type for e in seen] == [
            EventType.TURN_END,
            EventType.TURN_END,
            EventType.ERROR,
            EventType.ERROR,
        ]
        assert [e.payload["agent_id"] for e in seen[2:]] == ["A", "B"]
        assert "disk full" in seen[2].payload["error"]

        await orch.next_turn()
        assert len(orch.history) == 3
