"""Tier 2: a closed set of conversational intents.

The message is ranked against :data:`INTENT_LABELS` by a zero-shot
classifier.  Only a top label scoring at least the confidence threshold is
answered here; anything else, including an unloaded or failing classifier,
falls through to Tier 3.
"""

from __future__ import annotations

import logging
import random
from typing import Awaitable, Callable

from cortex.agent import AgentProfile
from cortex.memory.store import MemoryStore
from cortex.models.intent import IntentBackend
from cortex.pipeline.base import MessageContext
from cortex.pipeline.outcome import CommandOutcome, OutcomeKind

log = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.85

GREETINGS = ["Hello! How can I assist you?", "Hi there! What can I do for you today?", "Hey! Good to see you."]
FAREWELLS = ["Goodbye! Feel free to return any time.", "Farewell! Have a great day.", "See you later!"]
THANKS_REPLIES = ["You're welcome!", "No problem!", "Happy to help!", "Of course!"]


class IntentTier:
    """Answers greetings, farewells, thanks and questions about the agent itself.

    Args:
        classifier: Zero-shot backend; may be ``None`` or not yet loaded.
        store: Memory store read live for memory inquiries.
        confidence: Minimum accepted top-label score.
        rng: Random source for templated replies.
    """

    name = "intents"

    def __init__(
        self,
        classifier: IntentBackend | None,
        store: MemoryStore,
        confidence: float = DEFAULT_CONFIDENCE,
        rng: random.Random | None = None,
    ) -> None:
        self._classifier = classifier
        self._store = store
        self.confidence = confidence
        self._rng = rng or random.Random()
        self._responders: dict[str, Callable[[AgentProfile], Awaitable[str]]] = {
            "greeting": self._greeting,
            "farewell": self._farewell,
            "inquiry_identity": self._identity,
            "inquiry_capability": self._capability,
            "inquiry_persona": self._persona,
            "inquiry_memory": self._memory,
            "expression_of_gratitude": self._gratitude,
        }

    @property
    def labels(self) -> list[str]:
        return list(self._responders)

    async def classify(self, text: str) -> str | None:
        """Return the accepted label for *text*, or ``None``."""
        if self._classifier is None or not self._classifier.is_ready:
            return None
        predictions = await self._classifier.classify(text, self.labels)
        if not predictions:
            return None
        top = predictions[0]
        if top.score < self.confidence or top.label not in self._responders:
            log.debug("Intent %s below confidence (%.3f).", top.label, top.score)
            return None
        return top.label

    async def try_handle(self, ctx: MessageContext) -> CommandOutcome | None:
        label = await self.classify(ctx.text.strip())
        if label is None:
            return None
        text = await self._responders[label](ctx.agent)
        return CommandOutcome(text, OutcomeKind.NATIVE_INFERENCE, tier=self.name)

    async def _greeting(self, agent: AgentProfile) -> str:
        return self._rng.choice(GREETINGS)

    async def _farewell(self, agent: AgentProfile) -> str:
        return self._rng.choice(FAREWELLS)

    async def _gratitude(self, agent: AgentProfile) -> str:
        return self._rng.choice(THANKS_REPLIES)

    async def _identity(self, agent: AgentProfile) -> str:
        return f"My name is {agent.name}."

    async def _capability(self, agent: AgentProfile) -> str:
        return f"I have the following capabilities: {', '.join(m.value for m in agent.capabilities)}."

    async def _persona(self, agent: AgentProfile) -> str:
        return f'My core programming is based on this persona:\n\n"{agent.persona}"'

    async def _memory(self, agent: AgentProfile) -> str:
        contents = await self._store.contents(agent.name)
        if not contents:
            return "I don't have any persistent memories yet. You can teach me by saying 'Remember...'"
        return "Here is what I remember:\n- " + "\n- ".join(contents)
