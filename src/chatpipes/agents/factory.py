"""Build agents from configuration."""

from __future__ import annotations

from chatpipes.agents.base import Agent
from chatpipes.config import AgentConfig


def build_agent(config: AgentConfig) -> Agent:
    if config.engine == "scripted":
        from chatpipes.agents.scripted import ScriptedAgent

        return ScriptedAgent(config.name, config.replies or None)
    if config.engine == "anthropic_api":
        from chatpipes.agents.anthropic_api import AnthropicAgent

        kwargs: dict = {"agent_name": config.name, "persona": config.persona, "timeout": config.timeout}
        if config.model:
            kwargs["model"] = config.model
        return AnthropicAgent(**kwargs)
    if config.engine == "claude_cli":
        from chatpipes.agents.claude_cli import ClaudeCLIAgent

        return ClaudeCLIAgent(
            agent_name=config.name,
            model=config.model,
            persona=config.persona,
            timeout=config.timeout,
        )
    raise ValueError(f"Unknown agent engine: {config.engine}")
