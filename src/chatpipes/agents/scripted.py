"""Scripted agent for offline runs and tests."""

from __future__ import annotations

import asyncio
import itertools
from typing import Awaitable, Callable, Iterable, Union

from chatpipes.agents.base import AgentError

Reply = Union[Callable[[str], str], Callable[[str], Awaitable[str]]]


class ScriptedAgent:
    """Answers from a fixed list of replies (cycled) or a callable.

    Every prompt received is kept in ``prompts``.
    """

    def __init__(
        self,
        name: str,
        replies: Iterable[str] | Reply | None = None,
        *,
        delay: float = 0.0,
        fail_on: int | None = None,
    ) -> None:
        self._name = name
        self._delay = delay
        self._fail_on = fail_on
        self.prompts: list[str] = []
        if callable(replies):
            self._reply: Reply | None = replies
            self._cycle = None
        else:
            self._reply = None
            self._cycle = itertools.cycle(list(replies or [f"{name} has nothing to add."]))

    @property
    def name(self) -> str:
        return self._name

    async def respond(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self._fail_on is not None and len(self.prompts) == self._fail_on:
            raise AgentError(f"{self._name} failed on call {self._fail_on}")
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._reply is not None:
            result = self._reply(prompt)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        return next(self._cycle)
