"""Agent backed by the `claude -p` CLI, billed to a Claude Code subscription."""

from __future__ import annotations

import asyncio
import json
import logging
import subprocess
from dataclasses import dataclass

from chatpipes.agents.base import AgentError

logger = logging.getLogger(__name__)


@dataclass
class ClaudeCLIAgent:
    """Subprocess wrapper around `claude -p --output-format json`."""

    agent_name: str = "claude"
    model: str | None = None
    persona: str = ""
    timeout: int = 300

    @property
    def name(self) -> str:
        return self.agent_name

    def _command(self, prompt: str) -> list[str]:
        cmd = ["claude", "-p", "--output-format", "json"]
        if self.model:
            cmd.extend(["--model", self.model])
        if self.persona:
            cmd.extend(["--append-system-prompt", self.persona])
        cmd.append(prompt)
        return cmd

    async def respond(self, prompt: str) -> str:
        cmd = self._command(prompt)
        logger.debug("Running: %s", " ".join(cmd[:4]) + " ...")

        try:
            result = await asyncio.to_thread(
                subprocess.run,
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise AgentError(f"claude CLI did not respond within {self.timeout}s") from e
        except FileNotFoundError as e:
            raise AgentError("`claude` CLI not found. Is Claude Code installed?") from e

        if result.returncode != 0:
            stderr = result.stderr.strip()
            logger.error("claude CLI error (rc=%d): %s", result.returncode, stderr)
            raise AgentError(stderr or f"claude CLI exited with {result.returncode}")

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError:
            # Fallback: treat raw stdout as plain text
            return result.stdout.strip()

        return data.get("result", result.stdout.strip())
