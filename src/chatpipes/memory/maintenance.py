"""Snapshot maintenance: compress, cap and persist one agent's memory.

The agent's working-memory ledger in the store is replaced with what the
snapshot retained, so the ledger stays bounded between refreshes.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chatpipes.memory.models import MemorySnapshot

if TYPE_CHECKING:
    from chatpipes.memory.capper import MemoryCapper
    from chatpipes.memory.compressor import MemoryCompressor
    from chatpipes.memory.persistence import SnapshotRepository
    from chatpipes.memory.store import SharedMemoryStore

logger = logging.getLogger(__name__)


class SnapshotMaintainer:
    def __init__(
        self,
        store: SharedMemoryStore,
        compressor: MemoryCompressor,
        capper: MemoryCapper,
        repository: SnapshotRepository | None = None,
    ) -> None:
        self.store = store
        self.compressor = compressor
        self.capper = capper
        self.repository = repository

    def refresh(self, agent_id: str) -> MemorySnapshot:
        items = self.store.agent_items(agent_id)
        compressed = self.compressor.compress(items)
        snapshot = self.capper.build(
            agent_id,
            compressed,
            self.store.motifs_for(agent_id),
            self.compressor.style_vector(agent_id),
        )
        self.store.replace_agent_items(agent_id, snapshot.recent_memories)
        if self.repository is not None:
            self.repository.save(agent_id, snapshot.to_dict())
        logger.debug(
            "Refreshed %s: %d items -> %d compressed -> %d kept",
            agent_id,
            len(items),
            len(compressed),
            len(snapshot.recent_memories),
        )
        return snapshot

    def restore(self, agent_id: str) -> MemorySnapshot | None:
        """Rehydrate a persisted snapshot into the capper, compressor and ledger."""
        if self.repository is None:
            return None
        blob = self.repository.load(agent_id)
        if blob is None:
            return None
        snapshot = MemorySnapshot.from_dict(blob)
        self.capper.install(snapshot)
        self.compressor.set_style_vector(agent_id, snapshot.style_vector)
        self.store.replace_agent_items(agent_id, snapshot.recent_memories)
        logger.info("Restored snapshot for %s (%d memories)", agent_id, len(snapshot.recent_memories))
        return snapshot
