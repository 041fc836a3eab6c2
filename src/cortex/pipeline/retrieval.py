"""Tier 3: retrieval-augmented generation on the local model.

The agent's memories are ranked against the message with the TF-IDF
relevance engine, the best few are written into a grounding prompt together
with the persona and recent turns, and the prompt is streamed through the
local backend.  Without a usable backend the tier answers with a static
hint instead.

Backend failures map onto three user-facing messages: server unreachable,
model missing, or anything else (raw error text).  Submission failures come
back as an ``ERROR`` outcome; failures after streaming has started are
reported on the returned :class:`~cortex.pipeline.outcome.TokenStream`.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Callable, Protocol, Sequence

from cortex.agent import AgentProfile
from cortex.memory import relevance
from cortex.memory.store import MemoryStore
from cortex.models.ollama import OllamaClient, OllamaModelError, OllamaUnavailableError
from cortex.pipeline.base import LocalBackendConfig, MessageContext, Turn
from cortex.pipeline.outcome import CommandOutcome, OutcomeKind, PipelineResult, PipelineState, TokenStream

log = logging.getLogger(__name__)

STATIC_FALLBACK_TEXT = (
    "I'm not sure how to respond to that in native mode without a configured local LLM. "
    "You can teach me facts using 'remember that ...'."
)
NO_MEMORIES_MARKER = "No relevant memories found."


class LocalGenerator(Protocol):
    async def open_stream(self, model: str, prompt: str) -> AsyncIterator[str] | str:
        ...

    async def close(self) -> None:
        ...


def build_prompt(
    agent: AgentProfile,
    message: str,
    history: Sequence[Turn],
    memories: list[str],
    history_window: int = 10,
) -> str:
    """Compose the grounding prompt sent to the local model."""
    recent = list(history)[-history_window:] if history_window > 0 else []
    history_text = "\n".join(f"{turn.sender}: {turn.text}" for turn in recent)
    memory_text = "\n".join(f"- {m}" for m in memories) if memories else NO_MEMORIES_MARKER
    return (
        f'You are {agent.name}. Your persona is: "{agent.persona}".\n'
        f"The user is talking to you. Here is the recent conversation history:\n"
        f"{history_text}\n\n"
        f"You have the following memories. Use them to inform your response if they "
        f"are relevant to the user's last message.\n"
        f"{memory_text}\n\n"
        f'Respond to the user\'s last message: "{message}"'
    )


def describe_backend_error(exc: Exception, config: LocalBackendConfig) -> str:
    if isinstance(exc, OllamaUnavailableError):
        return (
            f"Could not connect to the Ollama server at {config.url}. "
            "Please ensure it is running and accessible."
        )
    if isinstance(exc, OllamaModelError):
        return f'The selected model "{config.model}" was not found on the Ollama server.'
    return f"Local model (Ollama) error: {exc}"


class RetrievalTier:
    """Streams a grounded answer from the local model.

    Args:
        store: Memory store to retrieve from.
        generator_factory: Builds a backend client for a base URL.  Clients
            are cached per URL and closed by :meth:`close`.
        threshold: Minimum relevance score for a memory to be included.
        top_k: Maximum number of memories included.
        history_window: Number of recent turns included.
    """

    name = "retrieval"

    def __init__(
        self,
        store: MemoryStore,
        generator_factory: Callable[[str], LocalGenerator] = OllamaClient,
        threshold: float = 0.1,
        top_k: int = 5,
        history_window: int = 10,
    ) -> None:
        self._store = store
        self._factory = generator_factory
        self._generators: dict[str, LocalGenerator] = {}
        self.threshold = threshold
        self.top_k = top_k
        self.history_window = history_window

    def _generator(self, url: str) -> LocalGenerator:
        generator = self._generators.get(url)
        if generator is None:
            generator = self._generators[url] = self._factory(url)
        return generator

    async def relevant_memories(self, agent_name: str, message: str) -> list[str]:
        contents = await self._store.contents(agent_name)
        return relevance.top_k(message, contents, threshold=self.threshold, k=self.top_k)

    async def try_handle(self, ctx: MessageContext) -> PipelineResult:
        config = ctx.backend
        if not config.usable:
            return CommandOutcome(
                STATIC_FALLBACK_TEXT,
                OutcomeKind.NATIVE_INFERENCE,
                state=PipelineState.STATIC_FALLBACK,
                tier=self.name,
            )

        message = ctx.text.strip()
        try:
            memories = await self.relevant_memories(ctx.agent.name, message)
            prompt = build_prompt(ctx.agent, message, ctx.history, memories, self.history_window)
            log.debug(
                "Submitting grounded prompt for %s (%d memories) to %s.",
                ctx.agent.name, len(memories), config.model,
            )
            source = await self._generator(config.url).open_stream(config.model, prompt)
        except Exception as exc:
            log.warning("Local generation failed for %s: %s", ctx.agent.name, exc)
            return CommandOutcome.error(describe_backend_error(exc, config), tier=self.name)

        return TokenStream(
            source,
            on_error=lambda exc: CommandOutcome.error(describe_backend_error(exc, config), tier=self.name),
            tier=self.name,
        )

    async def close(self) -> None:
        for generator in self._generators.values():
            await generator.close()
        self._generators.clear()
