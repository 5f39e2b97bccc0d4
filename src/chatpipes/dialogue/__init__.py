"""Turn-based multi-agent dialogue orchestration."""
