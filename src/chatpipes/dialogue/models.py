"""Dialogue state types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from chatpipes.agents.base import Agent

BOTH = "both"


class DialogueStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"

    @property
    def terminal(self) -> bool:
        return self in (DialogueStatus.STOPPED, DialogueStatus.COMPLETED)


class InterjectionKind(str, Enum):
    SIDE_QUESTION = "side_question"
    CORRECTION = "correction"
    DIRECTION = "direction"
    PAUSE = "pause"
    RESUME = "resume"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 0, "medium": 1, "high": 2}[self.value]


@dataclass(frozen=True)
class Interjection:
    """Out-of-band instruction for a future turn of `target` (an agent id or "both")."""

    id: str
    kind: InterjectionKind
    text: str
    target: str = BOTH
    priority: Priority = Priority.MEDIUM
    created_at: float = 0.0
    # Arrival order inside the queue, set on insertion
    seq: int = 0

    def matches(self, agent_id: str) -> bool:
        return self.target == BOTH or self.target == agent_id


@dataclass(frozen=True)
class Exchange:
    agent_id: str
    agent_name: str
    message: str
    round: int
    timestamp: float
    prompt: str = ""
    applied_interjection_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "message": self.message,
            "round": self.round,
            "timestamp": self.timestamp,
            "applied_interjection_id": self.applied_interjection_id,
        }


@dataclass
class Participant:
    id: str
    name: str
    agent: Agent
    active: bool = True


@dataclass(frozen=True)
class TurnState:
    """Read-only view of a dialogue's progress."""

    round: int
    turn_index: int
    current_agent_index: int
    status: DialogueStatus
    pending_interjections: tuple[Interjection, ...] = ()
    history: tuple[Exchange, ...] = field(default_factory=tuple)

    @property
    def is_running(self) -> bool:
        return self.status in (DialogueStatus.RUNNING, DialogueStatus.PAUSED)

    @property
    def is_paused(self) -> bool:
        return self.status is DialogueStatus.PAUSED
