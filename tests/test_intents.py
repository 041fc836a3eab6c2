"""Tests for Tier 2 intent handling."""

import random

import pytest
from conftest import FakeClassifier

from cortex.pipeline.base import MessageContext
from cortex.pipeline.intents import GREETINGS, IntentTier
from cortex.pipeline.outcome import OutcomeKind


def make_tier(store, label=None, score=0.0, ready=True):
    return IntentTier(FakeClassifier(label, score, ready), store, rng=random.Random(0))


@pytest.mark.asyncio
async def test_confident_greeting(store, agent):
    tier = make_tier(store, "greeting", 0.97)
    outcome = await tier.try_handle(MessageContext(text="hey there", agent=agent))
    assert outcome.kind is OutcomeKind.NATIVE_INFERENCE
    assert outcome.response_text in GREETINGS


@pytest.mark.asyncio
async def test_threshold_is_inclusive(store, agent):
    tier = make_tier(store, "inquiry_identity", 0.85)
    outcome = await tier.try_handle(MessageContext(text="who are you", agent=agent))
    assert outcome.response_text == "My name is Nova."


@pytest.mark.asyncio
async def test_low_confidence_falls_through(store, agent):
    tier = make_tier(store, "greeting", 0.84)
    assert await tier.try_handle(MessageContext(text="hmm", agent=agent)) is None


@pytest.mark.asyncio
async def test_unloaded_classifier_falls_through(store, agent):
    tier = make_tier(store, "greeting", 0.99, ready=False)
    assert await tier.try_handle(MessageContext(text="hello", agent=agent)) is None
    assert await IntentTier(None, store).try_handle(MessageContext(text="hello", agent=agent)) is None


@pytest.mark.asyncio
async def test_capability_and_persona(store, agent):
    capability = await make_tier(store, "inquiry_capability", 0.9).try_handle(
        MessageContext(text="what can you do", agent=agent)
    )
    assert capability.response_text == "I have the following capabilities: chat, logic."
    persona = await make_tier(store, "inquiry_persona", 0.9).try_handle(
        MessageContext(text="describe yourself", agent=agent)
    )
    assert agent.persona in persona.response_text


@pytest.mark.asyncio
async def test_memory_inquiry_reads_live_store(store, agent):
    tier = make_tier(store, "inquiry_memory", 0.95)
    empty = await tier.try_handle(MessageContext(text="what do you remember", agent=agent))
    assert "don't have any persistent memories" in empty.response_text

    # The mirror on the profile is stale; the store is the source of truth.
    await store.add(agent.name, "the user likes tea")
    stale_agent = agent.with_knowledge(["something old"])
    outcome = await tier.try_handle(MessageContext(text="what do you remember", agent=stale_agent))
    assert outcome.response_text == "Here is what I remember:\n- the user likes tea"
