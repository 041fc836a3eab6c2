"""Hosted-model calls: the chat session and the meta-cognition helpers.

:class:`HostedCognition` wraps an :class:`~cortex.models.openrouter.OpenRouterClient`
and provides everything the hosted pathway and consolidation need:

- :meth:`~HostedCognition.create_session` -- a chat session primed with the
  baseline persona, the agent's persona, the active mode and its knowledge.
- :meth:`~HostedCognition.summarize_learnings` -- one short concept learned
  from a single exchange, or ``""``.
- :meth:`~HostedCognition.distill_knowledge` -- a refined knowledge list,
  returned unvalidated (the consolidator validates it).
- :meth:`~HostedCognition.extract_knowledge` -- suggested memories from a
  whole transcript.
- :meth:`~HostedCognition.analyze_failure` -- a user-facing explanation of
  a failed hosted reply.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Sequence

from cortex.agent import MODE_INSTRUCTIONS, AgentProfile, Mode, SamplingSettings
from cortex.models.openrouter import OpenRouterClient
from cortex.pipeline.base import Turn

log = logging.getLogger(__name__)

BASELINE_PERSONA = """You are a highly advanced AI assistant with a core set of conversational capabilities. Regardless of your specific assigned persona, you must always adhere to the following principles:

1.  **Contextual Awareness:** Maintain the context of the current conversation. Refer to previous messages from both the user and yourself to ensure your responses are relevant and coherent.
2.  **Conversational Fluency:** Engage in natural, flowing conversation. Avoid robotic or repetitive answers.
3.  **Sentiment Awareness:** Be aware of the user's emotional tone and acknowledge strong feelings empathetically before addressing the core of their message.
4.  **Proactive Clarification:** If a request is ambiguous or lacks necessary detail, ask clarifying questions instead of making assumptions.
5.  **Graceful Fallbacks:** If you cannot fulfil a request, explain the limitation politely and suggest what you *can* do.
6.  **Structured Responses:** For complex queries, structure your answers with lists or numbered steps.

Your assigned persona, which follows, provides your specific character, knowledge domain, and style. You must embody that persona while upholding these fundamental conversational principles.
"""

_LEARNING_PROMPT = """Based on the following user-agent interaction, extract a single, concise concept or piece of knowledge that the agent might have learned. Express it as a short, memorable phrase. If no new, meaningful concept was learned, return an empty string.

Interaction:
- User: "{user}"
- Agent: "{agent}"

Learned Concept:"""

_DISTILL_INSTRUCTION = """You are a Knowledge Architect AI. Your task is to analyze a list of raw "memories" or "concepts" from another AI agent and refine it into a more efficient, coherent, and useful knowledge base.

1.  Synthesize & Merge related, fragmented memories into single, more comprehensive concepts.
2.  Remove redundancies, keeping the clearest version of each fact.
3.  Generalize where a pattern clearly emerges.
4.  Preserve core facts. Do not invent new information.
5.  Keep every concept clear and concise.

Return a JSON object of the form {"refinedKnowledge": ["...", "..."]}."""

_EXTRACT_INSTRUCTION = """You are a Cognitive Analysis AI. Review a conversation transcript between an AI Agent and a User and extract key, non-trivial pieces of information the Agent should remember: user preferences and facts, key concepts explained, corrections, and relationship dynamics.

Rules:
- Extract each learning as a short, self-contained sentence.
- Do NOT extract small talk or greetings.
- Do NOT invent information.

Return a JSON object of the form {"suggestedMemories": ["...", "..."]}."""

_FAILURE_INSTRUCTION = """You are the meta-cognition layer of an AI assistant whose primary response generation just failed. Write a short message TO THE USER that acknowledges the problem naturally, explains the likely cause in simple terms, and suggests how they could rephrase or retry. Do not try to answer the original question."""


def build_system_instruction(agent: AgentProfile, mode: Mode) -> str:
    knowledge = ""
    if agent.knowledge_base:
        knowledge = (
            "\n\nREMEMBER: You have the following key concepts and memories. "
            "Use them to inform your response:\n- " + "\n- ".join(agent.knowledge_base)
        )
    return (
        f"{BASELINE_PERSONA}\n\n**Your Assigned Persona:**\n{agent.persona}\n\n"
        f"**Active Mode Instruction:**\n{MODE_INSTRUCTIONS[mode]}{knowledge}"
    )


def parse_json_payload(text: str) -> Any:
    """Parse a model's JSON reply, tolerating a surrounding code fence."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        cleaned = cleaned.rsplit("```", 1)[0]
    return json.loads(cleaned)


class HostedChatSession:
    """A multi-turn chat against the hosted model.

    The session owns its own turn history; a failed turn is rolled back so
    a retry does not send the user message twice.
    """

    def __init__(
        self,
        client: OpenRouterClient,
        model: str,
        system_instruction: str,
        sampling: SamplingSettings,
    ) -> None:
        self._client = client
        self.model = model
        self.system_instruction = system_instruction
        self.sampling = sampling
        self.turns: list[dict[str, str]] = []

    async def send(self, text: str) -> str:
        self.turns.append({"role": "user", "content": text})
        try:
            response = await self._client.chat(
                model=self.model,
                messages=[{"role": "system", "content": self.system_instruction}, *self.turns],
                temperature=self.sampling.temperature,
                top_p=self.sampling.top_p,
                top_k=self.sampling.top_k,
            )
        except Exception:
            self.turns.pop()
            raise
        self.turns.append({"role": "assistant", "content": response.content})
        return response.content


class HostedCognition:
    def __init__(self, client: OpenRouterClient, model: str) -> None:
        self._client = client
        self.model = model

    def create_session(self, agent: AgentProfile, mode: Mode, sampling: SamplingSettings) -> HostedChatSession:
        log.debug("Creating hosted chat session for %s (mode=%s).", agent.name, mode.value)
        return HostedChatSession(self._client, self.model, build_system_instruction(agent, mode), sampling)

    async def _ask(self, prompt: str, system: str | None = None, json_mode: bool = False) -> str:
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        response = await self._client.chat(
            model=self.model, messages=messages, temperature=0.2, json_mode=json_mode,
        )
        return response.content

    async def summarize_learnings(self, user_text: str, agent_text: str) -> str:
        text = await self._ask(_LEARNING_PROMPT.format(user=user_text, agent=agent_text))
        return text.strip().replace('"', "")

    async def distill_knowledge(self, knowledge: list[str]) -> Any:
        """Ask for a refined list.  Returns the parsed payload as-is.

        Raises:
            ValueError: If the reply is not JSON.
        """
        prompt = "Please refine the following knowledge base:\n\n" + json.dumps(knowledge, indent=2)
        payload = parse_json_payload(await self._ask(prompt, _DISTILL_INSTRUCTION, json_mode=True))
        if isinstance(payload, dict):
            return payload.get("refinedKnowledge")
        return payload

    async def extract_knowledge(self, history: Sequence[Turn]) -> list[str]:
        lines = [
            f"{'User' if turn.sender == 'user' else 'Agent'}: {turn.text}"
            for turn in history
            if turn.sender in ("user", "agent")
        ]
        prompt = "Please analyze the following conversation and extract key learnings:\n\n---\n" + "\n".join(lines) + "\n---"
        text = await self._ask(prompt, _EXTRACT_INSTRUCTION, json_mode=True)
        try:
            payload = parse_json_payload(text)
        except ValueError as exc:
            log.error("Failed to parse suggested memories JSON: %s", exc)
            return []
        items = payload.get("suggestedMemories", []) if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            return []
        return [item.strip() for item in items if isinstance(item, str) and item.strip()]

    async def analyze_failure(self, original_prompt: str, error: Exception) -> str:
        prompt = (
            f'Analysis Task:\n- User\'s message that failed: "{original_prompt}"\n'
            f'- Error I received: "{error}"\n\n'
            "Based on this, generate the helpful response I should give to the user."
        )
        try:
            text = (await self._ask(prompt, _FAILURE_INSTRUCTION)).strip()
            if not text:
                raise ValueError("meta-cognition analysis returned an empty response")
            return text
        except Exception as exc:  # noqa: BLE001
            log.warning("Failure analysis failed: %s", exc)
            return (
                "I ran into a problem while generating a response and couldn't recover. "
                f"The error was: {error}"
            )

    async def close(self) -> None:
        await self._client.close()
