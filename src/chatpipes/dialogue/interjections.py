"""Interjection queue and prompt markers.

Targets are matched when a turn consumes the queue, not when an interjection
is added, so an interjection waits as long as its target has not acted.
"""

from __future__ import annotations

import itertools
import logging
import threading

from chatpipes.dialogue.models import Interjection, InterjectionKind

logger = logging.getLogger(__name__)

_TEMPLATES = {
    InterjectionKind.SIDE_QUESTION: (
        "Side question - I want to hear your full response to the above - but also, {text}"
    ),
    InterjectionKind.CORRECTION: "Correction: {text}\n\nPlease adjust your response accordingly.",
    InterjectionKind.DIRECTION: "Direction: {text}\n\nPlease focus your response on this aspect.",
    InterjectionKind.PAUSE: (
        "Pause requested: {text}\n\n"
        "Please pause your response here and wait for further instruction."
    ),
    InterjectionKind.RESUME: "Resume: {text}\n\nPlease continue with your response.",
}


def apply_interjection(prompt: str, interjection: Interjection) -> str:
    """Append the interjection's marker to a prompt."""
    suffix = _TEMPLATES[interjection.kind].format(text=interjection.text)
    return f"{prompt}\n\n{suffix}"


class InterjectionQueue:
    def __init__(self) -> None:
        self._pending: list[Interjection] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def add(self, interjection: Interjection) -> Interjection:
        with self._lock:
            queued = Interjection(
                id=interjection.id,
                kind=interjection.kind,
                text=interjection.text,
                target=interjection.target,
                priority=interjection.priority,
                created_at=interjection.created_at,
                seq=next(self._seq),
            )
            self._pending.append(queued)
        return queued

    def pop_for(self, agent_id: str) -> Interjection | None:
        """Remove and return the best interjection for an agent.

        Highest priority wins; ties go to the earliest arrival.
        """
        with self._lock:
            matching = [i for i in self._pending if i.matches(agent_id)]
            if not matching:
                return None
            best = min(matching, key=lambda i: (-i.priority.rank, i.seq))
            self._pending.remove(best)
        return best

    def drop_targeted(self, agent_id: str) -> list[Interjection]:
        """Discard interjections aimed specifically at one agent."""
        with self._lock:
            dropped = [i for i in self._pending if i.target == agent_id]
            self._pending = [i for i in self._pending if i.target != agent_id]
        if dropped:
            logger.info("Dropped %d interjection(s) for skipped agent %s", len(dropped), agent_id)
        return dropped

    def pending(self) -> tuple[Interjection, ...]:
        with self._lock:
            return tuple(self._pending)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
