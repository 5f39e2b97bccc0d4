"""Agent that talks to the Anthropic Messages API directly."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from chatpipes.agents.base import AgentError

logger = logging.getLogger(__name__)


@dataclass
class AnthropicAgent:
    """Direct Anthropic API via the `anthropic` SDK. The persona is the system prompt."""

    agent_name: str = "claude"
    model: str = "claude-sonnet-4-5-20250929"
    persona: str = ""
    max_tokens: int = 1024
    timeout: int = 120

    def __post_init__(self) -> None:
        try:
            import anthropic

            self._client = anthropic.Anthropic()
        except ImportError:
            raise ImportError(
                "anthropic package required. Install with: pip install 'chatpipes[api]'"
            )

    @property
    def name(self) -> str:
        return self.agent_name

    async def respond(self, prompt: str) -> str:
        kwargs: dict = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if self.persona:
            kwargs["system"] = self.persona

        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(self._client.messages.create, **kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise AgentError(f"Anthropic API did not respond within {self.timeout}s")
        except Exception as e:
            logger.error("Anthropic API error: %s", e)
            raise AgentError(f"Anthropic API error: {e}") from e

        return response.content[0].text if response.content else ""
