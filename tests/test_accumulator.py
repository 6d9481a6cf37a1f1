from __future__ import annotations

import pytest

from whisperly.core.accumulator import StreamAccumulator, accumulate


def test_accumulator_returns_the_whole_buffer():
    buffer = StreamAccumulator()
    assert buffer.append("Hel") == "Hel"
    assert buffer.append("") == "Hel"
    assert buffer.append("lo") == "Hello"
    assert len(buffer) == 5
    assert buffer.text == "Hello"


@pytest.mark.asyncio
async def test_accumulate_yields_once_per_increment():
    async def feed():
        for part in ("a", "b", "", "c"):
            yield part

    assert [text async for text in accumulate(feed())] == ["a", "ab", "ab", "abc"]
