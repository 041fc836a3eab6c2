"""Tests for TokenStream lifecycle."""

import pytest

from cortex.pipeline.outcome import (
    TERMINAL_STATES,
    CommandOutcome,
    OutcomeKind,
    PipelineState,
    TokenStream,
)


class TrackedSource:
    def __init__(self, fragments):
        self.fragments = list(fragments)
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.fragments:
            raise StopAsyncIteration
        return self.fragments.pop(0)

    async def aclose(self):
        self.closed = True


def test_terminal_states():
    assert TERMINAL_STATES == {
        PipelineState.RESPOND,
        PipelineState.ERROR_RESPOND,
        PipelineState.STATIC_FALLBACK,
        PipelineState.COMPLETE,
    }
    assert not PipelineState.STREAMING.is_terminal


def test_error_outcome_shape():
    outcome = CommandOutcome.error("boom", tier="retrieval")
    assert outcome.kind is OutcomeKind.ERROR
    assert outcome.state is PipelineState.ERROR_RESPOND
    assert outcome.updated_knowledge is None


@pytest.mark.asyncio
async def test_string_source_is_one_fragment():
    stream = TokenStream("all at once")
    assert [f async for f in stream] == ["all at once"]
    assert stream.state is PipelineState.COMPLETE
    assert stream.fragment_count == 1


@pytest.mark.asyncio
async def test_fragments_in_order_and_source_released():
    source = TrackedSource(["a", "", "b", "c"])
    stream = TokenStream(source)
    assert await stream.collect() == "abc"
    assert stream.fragment_count == 3
    assert source.closed is True


@pytest.mark.asyncio
async def test_cannot_iterate_twice():
    stream = TokenStream("x")
    await stream.collect()
    with pytest.raises(RuntimeError):
        stream.__aiter__()


@pytest.mark.asyncio
async def test_cancel_stops_at_boundary():
    source = TrackedSource(["a", "b", "c", "d"])
    stream = TokenStream(source)
    received = []
    async for fragment in stream:
        received.append(fragment)
        if len(received) == 2:
            stream.cancel()
    assert received == ["a", "b"]
    assert stream.cancelled is True
    assert stream.state is PipelineState.COMPLETE
    assert source.closed is True


@pytest.mark.asyncio
async def test_aclose_without_iterating():
    source = TrackedSource(["a"])
    async with TokenStream(source) as stream:
        pass
    assert source.closed is True
    assert stream.state is PipelineState.COMPLETE


@pytest.mark.asyncio
async def test_failure_without_mapper_becomes_error_outcome():
    async def broken():
        yield "partial"
        raise ValueError("bad json")

    stream = TokenStream(broken(), tier="retrieval")
    assert await stream.collect() == "partial"
    assert stream.state is PipelineState.ERROR_RESPOND
    assert stream.error.response_text == "bad json"
    assert stream.error.tier == "retrieval"
