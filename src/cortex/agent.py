"""Agent profiles: the configurable identity a session talks as.

An :class:`AgentProfile` bundles the display name (which also keys the
agent's memory namespace), a free-text persona, the capability modes the
agent exposes, and an in-memory mirror of its knowledge list.  Profiles
arriving from JSON files or other untrusted sources go through
:func:`normalize_agent`, which fills defaults for anything missing or
mistyped instead of rejecting the document.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

log = logging.getLogger(__name__)


class Mode(str, Enum):
    """Capability modes an agent can be switched into."""

    CHAT = "chat"
    LOGIC = "logic"
    MATH = "math"
    CODE = "code"
    EMOTION = "emotion"


MODE_INSTRUCTIONS: dict[Mode, str] = {
    Mode.CHAT: "You are in standard Chat mode. Engage in a friendly, conversational manner.",
    Mode.LOGIC: (
        "You are in Logic mode. Your responses should be structured, rational, "
        "and based on deductive reasoning. Avoid emotional language."
    ),
    Mode.MATH: (
        "You are in Math mode. Focus on providing accurate mathematical "
        "calculations and explanations. Use LaTeX for formulas where possible."
    ),
    Mode.CODE: (
        "You are in Code mode. Provide clean, efficient code snippets and "
        "explanations. Specify the language and use markdown for formatting."
    ),
    Mode.EMOTION: (
        "You are in Emotional Simulation mode. Respond with empathy, "
        "understanding, and emotional nuance. Reflect on the user's feelings."
    ),
}


@dataclass(frozen=True)
class SamplingSettings:
    """Sampling parameters forwarded to the hosted model."""

    temperature: float = 0.7
    top_p: float = 0.95
    top_k: int = 40


@dataclass
class AgentProfile:
    """A configured agent.

    Attributes:
        name: Display name.  Also the memory namespace identifier.
        persona: Free-text character description injected into prompts.
        capabilities: Modes the agent supports, first one is the default.
        knowledge_base: Mirror of the agent's memory contents.  Replaced
            wholesale, never mutated in place, so concurrent readers always
            see a complete list.
    """

    name: str
    persona: str
    capabilities: list[Mode] = field(default_factory=lambda: [Mode.CHAT])
    role: str = "General Assistant"
    description: str = "No description provided."
    knowledge_base: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def default_mode(self) -> Mode:
        return self.capabilities[0] if self.capabilities else Mode.CHAT

    def with_knowledge(self, knowledge: list[str]) -> AgentProfile:
        """Return a copy carrying *knowledge* as its knowledge list."""
        return replace(self, knowledge_base=list(knowledge))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "role": self.role,
            "description": self.description,
            "persona": self.persona,
            "capabilities": [m.value for m in self.capabilities],
            "knowledgeBase": list(self.knowledge_base),
            "metadata": dict(self.metadata),
        }


_DEFAULT_NAME = "Unnamed Agent"
_DEFAULT_PERSONA = "A helpful AI assistant."


def _coerce_modes(raw: Any) -> list[Mode]:
    if not isinstance(raw, list) or not raw:
        return [Mode.CHAT]
    modes: list[Mode] = []
    for item in raw:
        try:
            modes.append(Mode(str(item).lower()))
        except ValueError:
            log.warning("Ignoring unknown capability %r in agent profile.", item)
    return modes or [Mode.CHAT]


def normalize_agent(data: Any) -> AgentProfile:
    """Build a safe :class:`AgentProfile` from an arbitrary loaded object.

    Missing or mistyped fields fall back to defaults.  Both ``knowledgeBase``
    (document format) and ``knowledge_base`` keys are accepted.
    """
    if not isinstance(data, dict):
        return AgentProfile(name=_DEFAULT_NAME, persona=_DEFAULT_PERSONA)

    def _text(key: str, default: str) -> str:
        value = data.get(key)
        return value if isinstance(value, str) else default

    raw_knowledge = data.get("knowledgeBase", data.get("knowledge_base"))
    knowledge = (
        [k for k in raw_knowledge if isinstance(k, str)]
        if isinstance(raw_knowledge, list)
        else []
    )
    metadata = data.get("metadata")

    return AgentProfile(
        name=_text("name", _DEFAULT_NAME),
        persona=_text("persona", _DEFAULT_PERSONA),
        capabilities=_coerce_modes(data.get("capabilities")),
        role=_text("role", "General Assistant"),
        description=_text("description", "No description provided."),
        knowledge_base=knowledge,
        metadata=dict(metadata) if isinstance(metadata, dict) else {},
    )
