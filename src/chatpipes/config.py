"""Configuration loading from environment variables and chatpipes.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_DATA_DIR = Path.home() / ".chatpipes"
_CONFIG_FILENAME = "chatpipes.toml"

SYNTHESIS_STRATEGIES = ("all", "recent", "weighted")
SKIP_POLICIES = ("persist", "expire")


@dataclass
class DialogueConfig:
    """Turn orchestration settings."""

    max_rounds: int = 10
    turn_delay_ms: int = 1000
    context_window: int = 3
    synthesis_strategy: str = "recent"
    skip_inactive_agents: bool = True
    # What happens to an interjection whose target is skipped as inactive
    interjection_skip_policy: str = "persist"
    pause_poll_interval_ms: int = 1000
    snapshot_every_rounds: int = 1
    topic: str | None = None


@dataclass
class MemoryConfig:
    """Shared memory store settings."""

    max_memories: int = 1000
    decay_rate_per_hour: float = 0.01
    callback_threshold: float = 0.3
    joke_threshold: float = 0.5
    theme_threshold: float = 0.4
    surreal_threshold: float = 0.6
    inactive_threshold: float = 0.1
    decay_interval_seconds: int = 300
    callback_frequency: float = 0.3
    joke_frequency: float = 0.2
    theme_frequency: float = 0.3
    surreal_frequency: float = 0.15
    relevant_limit: int = 5


@dataclass
class CapperConfig:
    """Per-agent snapshot budget."""

    max_size_per_agent_bytes: int = 512000
    max_recent_memories: int = 50
    min_confidence_threshold: float = 0.5
    recency_weight: float = 0.7
    recency_window_hours: float = 24.0
    persona_summary_length: int = 200
    motif_preservation_threshold: int = 1


@dataclass
class CompressionConfig:
    """Type-aware compaction thresholds."""

    fact_compression_threshold: int = 3
    joke_preservation_threshold: int = 2
    similarity_threshold: float = 0.6
    emotion_decay: float = 0.1
    suspicion_threshold: int = 2


@dataclass
class AgentConfig:
    """One dialogue participant."""

    id: str
    name: str = ""
    engine: str = "scripted"
    model: str | None = None
    persona: str = ""
    timeout: int = 120
    replies: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.id


@dataclass
class ConductorConfig:
    """Top-level chatpipes configuration."""

    dialogue: DialogueConfig = field(default_factory=DialogueConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    capper: CapperConfig = field(default_factory=CapperConfig)
    compression: CompressionConfig = field(default_factory=CompressionConfig)
    agents: list[AgentConfig] = field(default_factory=list)
    data_dir: Path = _DEFAULT_DATA_DIR
    log_level: str = "INFO"

    @property
    def snapshot_dir(self) -> Path:
        return self.data_dir / "snapshots"

    @property
    def transcript_dir(self) -> Path:
        return self.data_dir / "transcripts"


def _validate(config: ConductorConfig) -> None:
    strategy = config.dialogue.synthesis_strategy
    if strategy not in SYNTHESIS_STRATEGIES:
        raise ValueError(
            f"Unknown synthesis strategy {strategy!r}; expected one of {SYNTHESIS_STRATEGIES}"
        )
    policy = config.dialogue.interjection_skip_policy
    if policy not in SKIP_POLICIES:
        raise ValueError(
            f"Unknown interjection skip policy {policy!r}; expected one of {SKIP_POLICIES}"
        )
    if config.dialogue.max_rounds < 1:
        raise ValueError("max_rounds must be at least 1")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(config_path: Path | None = None) -> ConductorConfig:
    """Load configuration from environment variables and optional chatpipes.toml.

    Priority: environment variables > chatpipes.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.chatpipes/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _DEFAULT_DATA_DIR / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    dialogue_data = file_data.get("dialogue", {})
    memory_data = file_data.get("memory", {})
    capper_data = file_data.get("capper", {})
    compression_data = file_data.get("compression", {})

    config = ConductorConfig(
        dialogue=DialogueConfig(
            max_rounds=int(os.getenv("CHATPIPES_MAX_ROUNDS", dialogue_data.get("max_rounds", 10))),
            turn_delay_ms=int(
                os.getenv("CHATPIPES_TURN_DELAY_MS", dialogue_data.get("turn_delay_ms", 1000))
            ),
            context_window=int(
                os.getenv("CHATPIPES_CONTEXT_WINDOW", dialogue_data.get("context_window", 3))
            ),
            synthesis_strategy=os.getenv(
                "CHATPIPES_STRATEGY", dialogue_data.get("synthesis_strategy", "recent")
            ),
            skip_inactive_agents=_env_bool(
                "CHATPIPES_SKIP_INACTIVE", dialogue_data.get("skip_inactive_agents", True)
            ),
            interjection_skip_policy=dialogue_data.get("interjection_skip_policy", "persist"),
            pause_poll_interval_ms=int(dialogue_data.get("pause_poll_interval_ms", 1000)),
            snapshot_every_rounds=int(dialogue_data.get("snapshot_every_rounds", 1)),
            topic=dialogue_data.get("topic"),
        ),
        memory=MemoryConfig(
            max_memories=int(memory_data.get("max_memories", 1000)),
            decay_rate_per_hour=float(
                os.getenv("CHATPIPES_DECAY_RATE", memory_data.get("decay_rate_per_hour", 0.01))
            ),
            callback_threshold=float(memory_data.get("callback_threshold", 0.3)),
            joke_threshold=float(memory_data.get("joke_threshold", 0.5)),
            theme_threshold=float(memory_data.get("theme_threshold", 0.4)),
            surreal_threshold=float(memory_data.get("surreal_threshold", 0.6)),
            inactive_threshold=float(memory_data.get("inactive_threshold", 0.1)),
            decay_interval_seconds=int(memory_data.get("decay_interval_seconds", 300)),
            callback_frequency=float(memory_data.get("callback_frequency", 0.3)),
            joke_frequency=float(memory_data.get("joke_frequency", 0.2)),
            theme_frequency=float(memory_data.get("theme_frequency", 0.3)),
            surreal_frequency=float(memory_data.get("surreal_frequency", 0.15)),
            relevant_limit=int(memory_data.get("relevant_limit", 5)),
        ),
        capper=CapperConfig(
            max_size_per_agent_bytes=int(
                os.getenv(
                    "CHATPIPES_MAX_SIZE_BYTES",
                    capper_data.get("max_size_per_agent_bytes", 512000),
                )
            ),
            max_recent_memories=int(capper_data.get("max_recent_memories", 50)),
            min_confidence_threshold=float(capper_data.get("min_confidence_threshold", 0.5)),
            recency_weight=float(capper_data.get("recency_weight", 0.7)),
            recency_window_hours=float(capper_data.get("recency_window_hours", 24.0)),
            persona_summary_length=int(capper_data.get("persona_summary_length", 200)),
            motif_preservation_threshold=int(capper_data.get("motif_preservation_threshold", 1)),
        ),
        compression=CompressionConfig(
            fact_compression_threshold=int(compression_data.get("fact_compression_threshold", 3)),
            joke_preservation_threshold=int(
                compression_data.get("joke_preservation_threshold", 2)
            ),
            similarity_threshold=float(compression_data.get("similarity_threshold", 0.6)),
            emotion_decay=float(compression_data.get("emotion_decay", 0.1)),
            suspicion_threshold=int(compression_data.get("suspicion_threshold", 2)),
        ),
        agents=[AgentConfig(**entry) for entry in file_data.get("agents", [])],
        data_dir=Path(
            os.getenv("CHATPIPES_DATA_DIR", file_data.get("data_dir", str(_DEFAULT_DATA_DIR)))
        ).expanduser(),
        log_level=os.getenv("CHATPIPES_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    _validate(config)
    return config
