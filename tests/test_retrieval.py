"""Tests for Tier 3 retrieval-augmented generation."""

from dataclasses import dataclass

import pytest
from conftest import FakeGenerator

from cortex.models.ollama import OllamaError, OllamaModelError, OllamaUnavailableError
from cortex.pipeline.base import LocalBackendConfig, MessageContext
from cortex.pipeline.outcome import OutcomeKind, PipelineState, TokenStream
from cortex.pipeline.retrieval import (
    NO_MEMORIES_MARKER,
    STATIC_FALLBACK_TEXT,
    RetrievalTier,
    build_prompt,
)

BACKEND = LocalBackendConfig(url="http://ollama:11434", model="llama3", enabled=True)


@dataclass
class Msg:
    sender: str
    text: str


def make_tier(store, generator):
    return RetrievalTier(store, generator_factory=lambda url: generator)


@pytest.mark.asyncio
async def test_static_fallback_without_backend(store, agent, generator):
    tier = make_tier(store, generator)
    outcome = await tier.try_handle(MessageContext(text="tell me a story", agent=agent))
    assert outcome.state is PipelineState.STATIC_FALLBACK
    assert outcome.kind is OutcomeKind.NATIVE_INFERENCE
    assert outcome.response_text == STATIC_FALLBACK_TEXT
    assert generator.prompts == []


@pytest.mark.asyncio
async def test_enabled_backend_without_model_is_unusable(store, agent, generator):
    config = LocalBackendConfig(url="http://ollama:11434", model="", enabled=True)
    outcome = await make_tier(store, generator).try_handle(
        MessageContext(text="hi", agent=agent, backend=config)
    )
    assert outcome.state is PipelineState.STATIC_FALLBACK


@pytest.mark.asyncio
async def test_streams_grounded_answer(store, agent, generator):
    await store.add(agent.name, "the user's cat is named Miso")
    await store.add(agent.name, "the user works as a baker")
    await store.add(agent.name, "the user likes jazz")
    await store.add(agent.name, "the user drives a van")
    tier = make_tier(store, generator)

    stream = await tier.try_handle(
        MessageContext(text="what is my cat called?", agent=agent, backend=BACKEND)
    )
    assert isinstance(stream, TokenStream)
    assert await stream.collect() == "Hello world"
    assert stream.state is PipelineState.COMPLETE

    prompt = generator.prompts[0]
    assert agent.persona in prompt
    assert "- the user's cat is named Miso" in prompt
    assert "baker" not in prompt
    assert prompt.endswith('Respond to the user\'s last message: "what is my cat called?"')


@pytest.mark.asyncio
async def test_no_memories_marker(store, agent, generator):
    stream = await make_tier(store, generator).try_handle(
        MessageContext(text="hello", agent=agent, backend=BACKEND)
    )
    await stream.aclose()
    assert NO_MEMORIES_MARKER in generator.prompts[0]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (OllamaUnavailableError("refused"), "Could not connect to the Ollama server at http://ollama:11434."),
        (OllamaModelError("missing"), 'The selected model "llama3" was not found on the Ollama server.'),
        (OllamaError("HTTP 500: boom"), "Local model (Ollama) error: HTTP 500: boom"),
    ],
)
async def test_submission_errors_map_to_messages(store, agent, error, expected):
    generator = FakeGenerator(submit_error=error)
    outcome = await make_tier(store, generator).try_handle(
        MessageContext(text="hello", agent=agent, backend=BACKEND)
    )
    assert outcome.kind is OutcomeKind.ERROR
    assert outcome.state is PipelineState.ERROR_RESPOND
    assert outcome.response_text.startswith(expected)


@pytest.mark.asyncio
async def test_mid_stream_failure_keeps_partial_output(store, agent):
    generator = FakeGenerator(fragments=["one ", "two ", "three"], fail_after=2)
    stream = await make_tier(store, generator).try_handle(
        MessageContext(text="count", agent=agent, backend=BACKEND)
    )
    received = [fragment async for fragment in stream]
    assert received == ["one ", "two "]
    assert stream.state is PipelineState.ERROR_RESPOND
    assert stream.error.kind is OutcomeKind.ERROR
    assert stream.error.response_text == "Local model (Ollama) error: stream broke"


def test_prompt_history_window(agent):
    history = [Msg("user", f"message {i}") for i in range(12)]
    prompt = build_prompt(agent, "latest", history, [], history_window=10)
    assert "message 1\n" not in prompt
    assert "user: message 2" in prompt
    assert "user: message 11" in prompt


@pytest.mark.asyncio
async def test_relevant_memories_capped(store, agent, generator):
    for name in ("damask", "gallica", "moss", "tea", "musk", "alba"):
        await store.add(agent.name, f"{name} roses grow well here")
    for i in range(10):
        await store.add(agent.name, f"tax paperwork item {i}")
    tier = RetrievalTier(store, generator_factory=lambda url: generator, top_k=5)
    memories = await tier.relevant_memories(agent.name, "what about the roses?")
    assert len(memories) == 5
    assert all("roses" in m for m in memories)


@pytest.mark.asyncio
async def test_close_releases_generators(store, agent, generator):
    tier = make_tier(store, generator)
    stream = await tier.try_handle(MessageContext(text="hi", agent=agent, backend=BACKEND))
    await stream.aclose()
    await tier.close()
    assert generator.closed is True
