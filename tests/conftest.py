"""Shared fixtures for the Agent Cortex test suite."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from cortex.agent import AgentProfile, Mode
from cortex.memory.backends import InMemoryBackend
from cortex.memory.store import MemoryStore
from cortex.models.intent import IntentPrediction
from cortex.models.openrouter import ChatResponse


class FakeClassifier:
    """Zero-shot stand-in returning a fixed ranking."""

    def __init__(self, label=None, score=0.0, ready=True):
        self.label = label
        self.score = score
        self.ready = ready
        self.calls = []

    @property
    def is_ready(self):
        return self.ready

    async def classify(self, text, labels):
        self.calls.append(text)
        if self.label is None:
            return None
        return [IntentPrediction(self.label, self.score)]


class FakeGenerator:
    """Local generator yielding canned fragments, optionally failing midway."""

    def __init__(self, fragments=("Hello", " world"), fail_after=None, submit_error=None):
        self.fragments = list(fragments)
        self.fail_after = fail_after
        self.submit_error = submit_error
        self.prompts = []
        self.closed = False

    async def open_stream(self, model, prompt):
        self.prompts.append(prompt)
        if self.submit_error is not None:
            raise self.submit_error
        return self._stream()

    async def _stream(self):
        for i, fragment in enumerate(self.fragments):
            if self.fail_after is not None and i == self.fail_after:
                raise RuntimeError("stream broke")
            yield fragment

    async def close(self):
        self.closed = True


def chat_response(content):
    return ChatResponse(
        content=content, model="test/model", input_tokens=1, output_tokens=1,
        cost=0.0, finish_reason="stop",
    )


@pytest.fixture
def store():
    return MemoryStore(InMemoryBackend())


@pytest.fixture
def agent():
    return AgentProfile(
        name="Nova",
        persona="A curious research assistant.",
        capabilities=[Mode.CHAT, Mode.LOGIC],
    )


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def mock_openrouter():
    """Mock OpenRouter client."""
    client = AsyncMock()
    client.session_cost = 0.0
    client.chat = AsyncMock(return_value=chat_response("Hi from the cloud."))
    client.close = AsyncMock()
    return client


@pytest.fixture
def mock_ollama():
    """Mock Ollama client."""
    client = MagicMock()
    client.list_models = AsyncMock(return_value=[])
    client.delete_model = AsyncMock()
    client.open_stream = AsyncMock()
    client.close = AsyncMock()
    return client
