"""Ports (interfaces) for runner implementations.

The rest of the system (registry, lifecycle, CLI) should depend on these
contracts rather than on ``PersistentRunner`` itself.
"""

from __future__ import annotations

from typing import AsyncIterator, Protocol, runtime_checkable


RunnerEvent = tuple[str, object]


@runtime_checkable
class Runner(Protocol):
    """A queued, streaming runner bound to one channel."""

    def run(self, prompt: str) -> AsyncIterator[RunnerEvent]:
        ...

    def is_alive(self) -> bool:
        ...

    def shutdown(self) -> None:
        ...

    async def aclose(self) -> None:
        ...
