"""Transcript export/import as markdown with YAML frontmatter."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import frontmatter

from chatpipes.dialogue.models import Exchange

if TYPE_CHECKING:
    from chatpipes.dialogue.orchestrator import TurnOrchestrator

logger = logging.getLogger(__name__)


def render_transcript(orchestrator: TurnOrchestrator) -> str:
    state = orchestrator.state()
    lines = [f"# Dialogue {orchestrator.id}", ""]
    for exchange in state.history:
        lines.append(f"## Round {exchange.round}: {exchange.agent_name}")
        lines.append("")
        lines.append(exchange.message.strip())
        lines.append("")
    post = frontmatter.Post(
        "\n".join(lines),
        id=orchestrator.id,
        participants=[{"id": p.id, "name": p.name} for p in orchestrator.participants],
        status=state.status.value,
        round=state.round,
        turns=state.turn_index,
        exported_at=datetime.now().isoformat(timespec="seconds"),
        exchanges=[e.to_dict() for e in state.history],
    )
    return frontmatter.dumps(post)


def export_transcript(orchestrator: TurnOrchestrator, directory: Path) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{orchestrator.id}.md"
    path.write_text(render_transcript(orchestrator), encoding="utf-8")
    logger.info("Exported %d exchanges to %s", len(orchestrator.history), path)
    return path


def load_transcript(path: Path) -> tuple[dict, list[Exchange]]:
    """Read an exported transcript back. Returns (metadata, exchanges)."""
    post = frontmatter.load(str(path))
    metadata = dict(post.metadata)
    exchanges = [
        Exchange(
            agent_id=e["agent_id"],
            agent_name=e["agent_name"],
            message=e["message"],
            round=e["round"],
            timestamp=e["timestamp"],
            applied_interjection_id=e.get("applied_interjection_id"),
        )
        for e in metadata.pop("exchanges", [])
    ]
    return metadata, exchanges
