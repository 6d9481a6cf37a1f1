"""Turn an incremental text feed into growing snapshots."""

from __future__ import annotations

from typing import AsyncIterable, AsyncIterator


class StreamAccumulator:
    """Append-only text buffer."""

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._length = 0

    def append(self, increment: str) -> str:
        """Append ``increment`` and return a copy of the whole buffer."""
        if increment:
            self._parts.append(increment)
            self._length += len(increment)
        return self.text

    @property
    def text(self) -> str:
        if len(self._parts) > 1:
            self._parts = ["".join(self._parts)]
        return self._parts[0] if self._parts else ""

    def __len__(self) -> int:
        return self._length


async def accumulate(increments: AsyncIterable[str]) -> AsyncIterator[str]:
    """Yield the accumulated text after every increment, in arrival order."""
    buffer = StreamAccumulator()
    async for increment in increments:
        yield buffer.append(increment)
