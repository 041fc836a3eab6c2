"""Native (offline-capable) reasoning pipeline.

- :mod:`~cortex.pipeline.commands` -- Tier 1, explicit memory directives.
- :mod:`~cortex.pipeline.intents` -- Tier 2, closed-set conversational intents.
- :mod:`~cortex.pipeline.retrieval` -- Tier 3, retrieval-augmented local generation.
- :mod:`~cortex.pipeline.orchestrator` -- the single entry point chaining them.
"""

from cortex.pipeline.base import LocalBackendConfig, MessageContext, Tier
from cortex.pipeline.commands import CommandTier
from cortex.pipeline.intents import IntentTier
from cortex.pipeline.orchestrator import NativePipeline
from cortex.pipeline.outcome import (
    TERMINAL_STATES,
    CommandOutcome,
    OutcomeKind,
    PipelineResult,
    PipelineState,
    TokenStream,
)
from cortex.pipeline.retrieval import RetrievalTier

__all__ = [
    "CommandOutcome",
    "CommandTier",
    "IntentTier",
    "LocalBackendConfig",
    "MessageContext",
    "NativePipeline",
    "OutcomeKind",
    "PipelineResult",
    "PipelineState",
    "RetrievalTier",
    "TERMINAL_STATES",
    "Tier",
    "TokenStream",
]
