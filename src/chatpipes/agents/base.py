"""Agent protocol: the only thing the orchestrator needs from a participant."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


class AgentError(Exception):
    """Transport-level failure inside an agent adapter."""


@runtime_checkable
class Agent(Protocol):
    """Protocol that all agent backends must implement."""

    @property
    def name(self) -> str: ...

    async def respond(self, prompt: str) -> str:
        """Return the agent's reply to a prompt. Raises on transport failure."""
        ...
