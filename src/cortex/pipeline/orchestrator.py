"""The native pipeline: one entry point, tiers tried in order.

::

    Received -> Tier1Check -> Respond
                           -> Tier2Check -> Respond
                                         -> Tier3Attempt -> Streaming -> Complete | ErrorRespond
                                                         -> ErrorRespond
                                                         -> StaticFallback

Nothing raises out of :meth:`NativePipeline.process_message`.  Callers must
branch on the return type: a :class:`CommandOutcome` is finished, a
:class:`TokenStream` must be drained (or closed) and only reaches its
terminal state at the end.
"""

from __future__ import annotations

import logging
from typing import Sequence

from cortex.agent import AgentProfile
from cortex.config import CortexSettings
from cortex.memory.store import MemoryStore
from cortex.models.intent import IntentBackend
from cortex.pipeline.base import LocalBackendConfig, MessageContext, Tier, Turn
from cortex.pipeline.commands import CommandTier
from cortex.pipeline.intents import IntentTier
from cortex.pipeline.outcome import CommandOutcome, PipelineResult, PipelineState
from cortex.pipeline.retrieval import RetrievalTier

log = logging.getLogger(__name__)

_CHECK_STATES = (PipelineState.TIER1_CHECK, PipelineState.TIER2_CHECK, PipelineState.TIER3_ATTEMPT)


class NativePipeline:
    """Runs an inbound message through the tier chain.

    Args:
        tiers: Handlers in evaluation order.  The last one must always
            produce a result (the retrieval tier does).

    Attributes:
        trace: States visited by the most recent message, in order.
    """

    def __init__(self, tiers: Sequence[Tier]) -> None:
        if not tiers:
            raise ValueError("NativePipeline needs at least one tier")
        self.tiers = list(tiers)
        self.trace: list[PipelineState] = []

    @classmethod
    def build(
        cls,
        store: MemoryStore,
        classifier: IntentBackend | None,
        settings: CortexSettings,
    ) -> NativePipeline:
        return cls([
            CommandTier(store),
            IntentTier(classifier, store, confidence=settings.INTENT_CONFIDENCE),
            RetrievalTier(
                store,
                threshold=settings.RETRIEVAL_THRESHOLD,
                top_k=settings.RETRIEVAL_TOP_K,
                history_window=settings.HISTORY_WINDOW,
            ),
        ])

    def _check_state(self, index: int) -> PipelineState:
        return _CHECK_STATES[min(index, len(_CHECK_STATES) - 1)]

    async def process_message(
        self,
        text: str,
        agent: AgentProfile,
        history: Sequence[Turn] = (),
        backend: LocalBackendConfig | None = None,
    ) -> PipelineResult:
        ctx = MessageContext(
            text=text.strip(),
            agent=agent,
            history=tuple(history),
            backend=backend or LocalBackendConfig(),
        )
        self.trace = [PipelineState.RECEIVED]
        last = len(self.tiers) - 1

        for index, tier in enumerate(self.tiers):
            self.trace.append(self._check_state(index))
            try:
                result = await tier.try_handle(ctx)
            except Exception as exc:
                if index == 0:
                    log.exception("Tier %s failed for %s.", tier.name, agent.name)
                    return self._finish(CommandOutcome.error(f"Native processing error: {exc}", tier=tier.name))
                log.warning("Tier %s failed for %s, falling through: %s", tier.name, agent.name, exc)
                result = None

            if result is not None:
                return self._finish(result)
            if index == last:
                break

        log.error("No tier produced a result for %r.", ctx.text[:80])
        return self._finish(CommandOutcome.error("Native processing error: no handler produced a response."))

    def _finish(self, result: PipelineResult) -> PipelineResult:
        self.trace.append(result.state)
        log.debug(
            "Message handled by %s -> %s.",
            result.tier or "pipeline",
            result.state.value,
        )
        return result

    async def close(self) -> None:
        for tier in self.tiers:
            closer = getattr(tier, "close", None)
            if closer is not None:
                await closer()
