"""Prompt synthesis for the next speaker.

A prompt is the conversational opener, the exchanges the synthesis strategy
selects from history, and an optional memory block built from injection
suggestions and the speaker's latest snapshot.
"""

from __future__ import annotations

from typing import Sequence

from chatpipes.dialogue.models import Exchange
from chatpipes.memory.models import InjectionSuggestion, MemorySnapshot

_SNIPPET = 80
_SKIPPED_SHARE = 0.3
_MAX_SUGGESTIONS = 3


def select_exchanges(
    history: Sequence[Exchange],
    agent_id: str,
    strategy: str,
    window: int,
    participant_count: int,
) -> tuple[list[Exchange], list[Exchange]]:
    """Split other agents' exchanges into (summarized, verbatim) parts.

    - all: every exchange verbatim
    - recent: the last ``window * (participant_count - 1)`` exchanges
    - weighted: the recent window verbatim, plus older exchanges (minus the
      oldest 30%) as short snippets
    """
    others = [e for e in history if e.agent_id != agent_id]
    if strategy == "all":
        return [], others

    size = max(1, window * max(1, participant_count - 1))
    recent = others[-size:]
    if strategy == "recent":
        return [], recent
    if strategy == "weighted":
        older = others[: len(others) - len(recent)]
        skip = int(len(others) * _SKIPPED_SHARE)
        return older[skip:], recent
    raise ValueError(f"Unknown synthesis strategy: {strategy}")


def _snippet(text: str) -> str:
    text = " ".join(text.split())
    return text if len(text) <= _SNIPPET else text[: _SNIPPET - 3] + "..."


def memory_block(
    suggestions: Sequence[InjectionSuggestion], snapshot: MemorySnapshot | None
) -> str:
    lines: list[str] = []
    if snapshot is not None and snapshot.persona_summary:
        lines.append(f"Your conversational persona so far: {snapshot.persona_summary}.")
    for suggestion in list(suggestions)[:_MAX_SUGGESTIONS]:
        lines.append(f"- {suggestion.content}")
    if not lines:
        return ""
    return "[Shared memory]\n" + "\n".join(lines)


def build_prompt(
    history: Sequence[Exchange],
    agent_id: str,
    *,
    strategy: str,
    window: int,
    participant_names: dict[str, str],
    topic: str | None = None,
    suggestions: Sequence[InjectionSuggestion] = (),
    snapshot: MemorySnapshot | None = None,
) -> str:
    summarized, verbatim = select_exchanges(
        history, agent_id, strategy, window, len(participant_names)
    )
    others = [name for pid, name in participant_names.items() if pid != agent_id]
    parts: list[str] = []

    if not verbatim:
        if topic:
            parts.append(f"Please start the conversation about this topic: {topic}")
        else:
            parts.append("Please start the conversation with an engaging topic.")
    else:
        last = verbatim[-1]
        parts.append(
            f"You are in a conversation with {', '.join(others)}. "
            f"In reply to what {last.agent_name} just said:"
        )
        if summarized:
            earlier = "\n".join(f"- {e.agent_name}: {_snippet(e.message)}" for e in summarized)
            parts.append(f"Earlier in the conversation:\n{earlier}")
        if len(verbatim) > 1:
            parts.append("\n\n".join(f"{e.agent_name}: {e.message}" for e in verbatim[:-1]))
        parts.append(last.message)

    block = memory_block(suggestions, snapshot)
    if block:
        parts.append(block)
    return "\n\n".join(parts)
