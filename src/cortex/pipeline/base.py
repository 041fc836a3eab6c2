"""Shared inputs for the pipeline tiers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence

from cortex.agent import AgentProfile
from cortex.pipeline.outcome import PipelineResult


class Turn(Protocol):
    """Anything with a sender label and text, e.g. a transcript message."""

    @property
    def sender(self) -> str:
        ...

    @property
    def text(self) -> str:
        ...


@dataclass(frozen=True)
class LocalBackendConfig:
    """Where Tier 3 should send generation requests."""

    url: str = "http://localhost:11434"
    model: str = ""
    enabled: bool = False

    @property
    def usable(self) -> bool:
        return self.enabled and bool(self.model)


@dataclass(frozen=True)
class MessageContext:
    """One inbound message plus everything the tiers may consult."""

    text: str
    agent: AgentProfile
    history: Sequence[Turn] = field(default_factory=tuple)
    backend: LocalBackendConfig = field(default_factory=LocalBackendConfig)


class Tier(Protocol):
    """One stage of the fallback chain.

    ``try_handle`` returns ``None`` when the tier does not apply, letting the
    next tier have a go.
    """

    name: str

    async def try_handle(self, ctx: MessageContext) -> PipelineResult | None:
        ...
