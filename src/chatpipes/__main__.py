"""Entry point: python -m chatpipes [dialogue|snapshot <agent-id>]

- No args / "dialogue": run a dialogue between the configured agents
- "snapshot <id>":      print the stored memory snapshot of one agent
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from chatpipes.config import AgentConfig, ConductorConfig, load_config

_DEFAULT_AGENTS = [
    AgentConfig(
        id="alice",
        name="Alice",
        replies=[
            "Remember when the teapot started dreaming? That was hilarious.",
            "It feels like a surreal dream where time is melting.",
            "I wonder if the kettle keeps a secret diary.",
        ],
    ),
    AgentConfig(
        id="bob",
        name="Bob",
        replies=[
            "Haha, the dreaming teapot joke never gets old.",
            "Reality is just a very patient kettle, as if it were waiting for us.",
            "I love how we keep coming back to that teapot.",
        ],
    ),
]


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


async def _dialogue(config: ConductorConfig) -> None:
    from chatpipes.agents.factory import build_agent
    from chatpipes.core import Conductor
    from chatpipes.events import EventType

    conductor = Conductor(config)
    for agent_config in config.agents or _DEFAULT_AGENTS:
        conductor.add_agent(build_agent(agent_config), agent_config.id, agent_config.name)

    def _print_turn(event) -> None:
        exchange = event.payload["exchange"]
        print(f"\n[{exchange.round}] {exchange.agent_name}: {exchange.message}")

    conductor.events.subscribe(_print_turn, [EventType.TURN_END])
    await conductor.start()
    try:
        orchestrator = conductor.create_dialogue()
        path = await conductor.run_dialogue(orchestrator)
        print(f"\nTranscript written to {path}")
    finally:
        await conductor.stop()


def _run_dialogue() -> None:
    config = load_config()
    _setup_logging(config.log_level)
    try:
        asyncio.run(_dialogue(config))
    except KeyboardInterrupt:
        pass


def _show_snapshot(agent_id: str) -> None:
    config = load_config()
    _setup_logging(config.log_level)

    from chatpipes.memory.persistence import FileSnapshotRepository

    blob = FileSnapshotRepository(config.snapshot_dir).load(agent_id)
    if blob is None:
        print(f"No snapshot stored for {agent_id}")
        sys.exit(1)
    print(json.dumps(blob, indent=2, ensure_ascii=False))


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "dialogue"

    if cmd == "dialogue":
        _run_dialogue()
    elif cmd == "snapshot" and len(sys.argv) > 2:
        _show_snapshot(sys.argv[2])
    else:
        print("Usage: python -m chatpipes [dialogue|snapshot <agent-id>]")
        print("  dialogue        Run a dialogue between the configured agents (default)")
        print("  snapshot <id>   Print an agent's stored memory snapshot")
        sys.exit(1)


if __name__ == "__main__":
    main()
