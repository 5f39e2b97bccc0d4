"""Exception hierarchy for dialogue orchestration and memory capping."""

from __future__ import annotations


class ConductorError(Exception):
    """Base class for chatpipes errors."""


class InvalidStateError(ConductorError):
    """Operation attempted while the dialogue is paused, stopped or completed."""


class RoundLimitExceeded(ConductorError):
    """The dialogue already ran its configured number of rounds."""

    def __init__(self, max_rounds: int) -> None:
        super().__init__(f"Round limit of {max_rounds} reached")
        self.max_rounds = max_rounds


class NoActiveParticipantsError(ConductorError):
    """Every participant is inactive, nobody can take the next turn."""


class CollaboratorFailure(ConductorError):
    """An agent failed to produce a response. Fatal to the running dialogue."""

    def __init__(self, agent_id: str, message: str) -> None:
        super().__init__(f"Agent {agent_id} failed: {message}")
        self.agent_id = agent_id


class BudgetViolation(ConductorError):
    """A built snapshot exceeds its byte budget. Indicates a capper bug."""
