"""Snapshot persistence: key-value save/load of serialized snapshots.

The file backend writes one markdown file per agent. The serialized
snapshot lives in the YAML frontmatter; the body is a readable digest.
Previous versions are kept under `.versions/`.
"""

from __future__ import annotations

import logging
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import frontmatter

logger = logging.getLogger(__name__)

_VERSIONS_KEPT = 10


@runtime_checkable
class SnapshotRepository(Protocol):
    def save(self, agent_id: str, blob: dict[str, Any]) -> None: ...

    def load(self, agent_id: str) -> dict[str, Any] | None: ...


class InMemorySnapshotRepository:
    def __init__(self) -> None:
        self._blobs: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save(self, agent_id: str, blob: dict[str, Any]) -> None:
        with self._lock:
            self._blobs[agent_id] = blob

    def load(self, agent_id: str) -> dict[str, Any] | None:
        with self._lock:
            return self._blobs.get(agent_id)


class FileSnapshotRepository:
    """Markdown + frontmatter snapshot files under a root directory."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._lock = threading.Lock()
        (self.root / ".versions").mkdir(parents=True, exist_ok=True)

    def _slugify(self, name: str) -> str:
        """Minimal slug: strip illegal chars, spaces to hyphens."""
        slug = re.sub(r'[<>:"/\\|?*\n\r\t]', "", name)
        slug = slug.strip().replace(" ", "-")
        return slug or "unnamed"

    def path_for(self, agent_id: str) -> Path:
        return self.root / f"{self._slugify(agent_id)}.md"

    def _backup(self, path: Path) -> None:
        """Backup to .versions/, keep at most 10 versions per agent."""
        if not path.exists():
            return
        versions_dir = self.root / ".versions"
        versions_dir.mkdir(exist_ok=True)
        ts = datetime.now().strftime("%Y%m%dT%H%M%S%f")
        (versions_dir / f"{path.stem}-{ts}.md").write_text(
            path.read_text(encoding="utf-8"), encoding="utf-8"
        )
        own = re.compile(re.escape(path.stem) + r"-\d{8}T\d{12}\.md")
        old = sorted(f for f in versions_dir.iterdir() if own.fullmatch(f.name))
        for f in old[:-_VERSIONS_KEPT]:
            f.unlink()

    def _render_body(self, blob: dict[str, Any]) -> str:
        lines = [f"# Memory snapshot: {blob.get('agentId', '')}", ""]
        persona = blob.get("personaSummary")
        if persona:
            lines += ["## Persona", "", persona, ""]
        motifs = blob.get("motifs", {})
        if motifs:
            lines += ["## Motifs", ""]
            for motif in motifs.values():
                lines.append(
                    f"- [{motif['kind']}] {motif['name']} "
                    f"(used {motif['usageCount']}x, strength {motif['strength']:.2f})"
                )
            lines.append("")
        memories = blob.get("recentMemories", [])
        if memories:
            lines += ["## Recent memories", ""]
            lines += [f"- ({m['kind']}) {m['content']}" for m in memories]
            lines.append("")
        return "\n".join(lines)

    def save(self, agent_id: str, blob: dict[str, Any]) -> None:
        path = self.path_for(agent_id)
        post = frontmatter.Post(
            self._render_body(blob),
            agent_id=agent_id,
            saved_at=datetime.now().isoformat(timespec="seconds"),
            snapshot=blob,
        )
        with self._lock:
            self._backup(path)
            path.write_text(frontmatter.dumps(post), encoding="utf-8")
        logger.debug("Saved snapshot for %s to %s", agent_id, path)

    def load(self, agent_id: str) -> dict[str, Any] | None:
        path = self.path_for(agent_id)
        if not path.exists():
            return None
        with self._lock:
            post = frontmatter.load(str(path))
        snapshot = post.metadata.get("snapshot")
        if not isinstance(snapshot, dict):
            logger.warning("Snapshot file %s has no snapshot metadata", path)
            return None
        return snapshot
