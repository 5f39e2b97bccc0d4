"""Shared conversational memory.

Layout:
    store.py        SharedMemoryStore: records, motifs, triggers, decay, suggestions
    detection.py    keyword detection of captures in agent replies
    compressor.py   type-aware compaction of per-agent working memory
    capper.py       byte-budgeted per-agent snapshots
    persistence.py  snapshot repositories (in-memory, markdown + frontmatter)
    maintenance.py  compress -> cap -> persist pipeline
    scheduler.py    periodic decay task

Snapshots on disk:
    ~/.chatpipes/snapshots/
    ├── <agent-id>.md       # frontmatter holds the serialized snapshot
    └── .versions/          # timestamped backups (10 per agent)
"""
