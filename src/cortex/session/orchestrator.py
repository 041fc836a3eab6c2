"""Session orchestrator: one agent, one transcript, two pathways.

The :class:`SessionOrchestrator` owns the conversation with a single loaded
agent.  Messages go either through the hosted model (``HOSTED``) or through
the offline :class:`~cortex.pipeline.orchestrator.NativePipeline`
(``NATIVE``).  Only one inbound message is processed at a time; a second
``send_message`` while one is in flight raises :class:`SessionBusyError`.

After each exchange the transcript length is checked against the
consolidation schedule.  A due consolidation runs as a tracked background
task and never blocks message handling; its result replaces the agent's
knowledge list in one step under :attr:`SessionOrchestrator._knowledge_lock`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, AsyncIterator, Callable, Coroutine

from cortex.agent import AgentProfile, Mode, SamplingSettings, normalize_agent
from cortex.config import CortexSettings
from cortex.memory.consolidation import ConsolidationError, ConsolidationSchedule, Consolidator
from cortex.memory.store import MemoryStore, unique_contents
from cortex.models.ollama import LocalModel, OllamaClient, OllamaError, PullProgress
from cortex.pipeline.base import LocalBackendConfig
from cortex.pipeline.orchestrator import NativePipeline
from cortex.pipeline.outcome import CommandOutcome, OutcomeKind, TokenStream
from cortex.session.cognition import HostedChatSession, HostedCognition
from cortex.session.transcript import AGENT, USER, ChatMessage, Transcript

log = logging.getLogger(__name__)

CONSOLIDATION_STARTED = "Cognitive consolidation process initiated in the background..."
CONSOLIDATION_DONE = "Memory successfully consolidated and refined."
CONSOLIDATION_FAILED = "Cognitive consolidation failed."
ANALYSIS_FAILED = "Failed to analyze conversation."
MEMORY_SAVE_FAILED = "I could not save that to my memory:"


class Pathway(str, Enum):
    HOSTED = "hosted"
    NATIVE = "native"


class SessionBusyError(RuntimeError):
    """A message was sent while another one is still being processed."""


@dataclass
class LocalBackendStatus:
    """Connection state of the local model server.

    ``state`` is ``"connected"``, ``"disconnected"`` or ``"pending"``.
    """

    state: str = "disconnected"
    models: list[LocalModel] = field(default_factory=list)
    error: str | None = None

    @property
    def connected(self) -> bool:
        return self.state == "connected"


class SessionOrchestrator:
    """Drives one agent session.

    Args:
        store: Persistent memory store.
        pipeline: Native pipeline used on the ``NATIVE`` pathway.
        cognition: Hosted-model helpers, or ``None`` when no API key is
            configured.  Without it the hosted pathway is unavailable and
            consolidation is skipped.
        settings: Source of defaults for sampling, scheduling and the local
            backend.
        local_client_factory: Builds the client used for local model
            management (status, pull, delete).
    """

    def __init__(
        self,
        store: MemoryStore,
        pipeline: NativePipeline,
        cognition: HostedCognition | None = None,
        settings: CortexSettings | None = None,
        local_client_factory: Callable[[str], OllamaClient] = OllamaClient,
    ) -> None:
        settings = settings or CortexSettings()
        self.store = store
        self.pipeline = pipeline
        self.cognition = cognition
        self.settings = settings

        self.agent: AgentProfile | None = None
        self.mode = Mode.CHAT
        self.sampling = SamplingSettings(
            temperature=settings.TEMPERATURE, top_p=settings.TOP_P, top_k=settings.TOP_K,
        )
        self.transcript = Transcript()
        # User and agent messages since the agent was loaded; system notes excluded.
        self.conversation_messages = 0
        self.suggested_memories: list[str] | None = None

        self.pathway = Pathway.NATIVE
        self.hosted_available = False
        self.hosted_unavailable_reason: str | None = None
        self._hosted_session: HostedChatSession | None = None

        self.local = LocalBackendConfig(url=settings.OLLAMA_BASE_URL, model=settings.OLLAMA_MODEL)
        self.local_status = LocalBackendStatus()
        self._local_client_factory = local_client_factory
        self._local_client: OllamaClient | None = None

        self.schedule = ConsolidationSchedule(
            interval=settings.CONSOLIDATION_INTERVAL,
            min_messages=settings.CONSOLIDATION_MIN_MESSAGES,
        )
        self.consolidator = (
            Consolidator(cognition.distill_knowledge, min_entries=settings.CONSOLIDATION_MIN_ENTRIES)
            if cognition is not None
            else None
        )

        self._busy = False
        self._active_stream: TokenStream | None = None
        self._knowledge_lock = asyncio.Lock()
        self._consolidation_task: asyncio.Task | None = None
        self._background_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self, offline: bool = False) -> Pathway:
        """Decide which pathway the session starts on."""
        if offline:
            self.hosted_unavailable_reason = "Running in offline mode."
        elif self.cognition is None:
            self.hosted_unavailable_reason = "No hosted API key is configured."
        else:
            self.hosted_unavailable_reason = None
        self.hosted_available = self.hosted_unavailable_reason is None

        if self.hosted_available:
            self.pathway = Pathway.HOSTED
        else:
            log.info("Hosted pathway unavailable (%s); using native.", self.hosted_unavailable_reason)
            self.pathway = Pathway.NATIVE
        self._rebuild_hosted_session()
        return self.pathway

    @property
    def busy(self) -> bool:
        return self._busy

    def _require_agent(self) -> AgentProfile:
        if self.agent is None:
            raise RuntimeError("No agent loaded")
        return self.agent

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Create a tracked background task with error logging."""
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if not task.cancelled() and task.exception():
            log.error("Background task failed: %s", task.exception(), exc_info=task.exception())

    async def wait_background(self) -> None:
        """Wait for every background task started so far."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def close(self) -> None:
        log.info("Closing session.")
        await self.cancel_active_stream()
        for task in self._background_tasks:
            task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
            self._background_tasks.clear()
        await self.pipeline.close()
        if self._local_client is not None:
            await self._local_client.close()
            self._local_client = None

    # ------------------------------------------------------------------
    # Agent and knowledge
    # ------------------------------------------------------------------

    async def load_agent(self, data: Any) -> AgentProfile:
        """Load an agent document, seeding its memory and resetting the transcript."""
        agent = normalize_agent(data)
        if agent.knowledge_base:
            await self.store.reconcile(agent.name, agent.knowledge_base)
        async with self._knowledge_lock:
            self.agent = agent.with_knowledge(await self.store.contents(agent.name))
        self.mode = self.agent.default_mode
        self.suggested_memories = None
        self.transcript.reset()
        self.conversation_messages = 0
        self.transcript.system(f"{self.agent.name} has been loaded.")
        self._rebuild_hosted_session()
        log.info("Loaded agent %s (%d memories).", self.agent.name, len(self.agent.knowledge_base))
        return self.agent

    async def update_agent(self, updated: AgentProfile) -> AgentProfile:
        """Replace the current profile, moving memory on rename."""
        current = self._require_agent()
        if current.name != updated.name:
            await self.store.migrate(current.name, updated.name)
        async with self._knowledge_lock:
            await self.store.reconcile(updated.name, updated.knowledge_base)
            self.agent = updated.with_knowledge(updated.knowledge_base)
        self._rebuild_hosted_session()
        return self.agent

    async def _apply_knowledge(self, knowledge: list[str]) -> None:
        """Make *knowledge* the agent's complete list in the store and the mirror."""
        agent = self._require_agent()
        knowledge = unique_contents(knowledge)
        async with self._knowledge_lock:
            await self.store.reconcile(agent.name, knowledge)
            self.agent = self.agent.with_knowledge(knowledge)

    async def _refresh_mirror(self) -> None:
        agent = self._require_agent()
        async with self._knowledge_lock:
            self.agent = self.agent.with_knowledge(await self.store.contents(agent.name))

    async def import_knowledge(self, text: str, source_name: str) -> int:
        """Store every line of *text* not already known.  Returns the count added."""
        agent = self._require_agent()
        concepts = [line.strip() for line in text.splitlines() if line.strip()]
        if not concepts:
            return 0
        known = {c.casefold() for c in await self.store.contents(agent.name)}
        added = 0
        for concept in concepts:
            if concept.casefold() in known:
                continue
            await self.store.add(agent.name, concept)
            known.add(concept.casefold())
            added += 1
        await self._refresh_mirror()
        self.transcript.system(f"Imported {added} new concepts from {source_name}.")
        return added

    # ------------------------------------------------------------------
    # Pathway, mode, sampling
    # ------------------------------------------------------------------

    def _rebuild_hosted_session(self) -> None:
        if self.pathway is Pathway.HOSTED and self.agent is not None and self.cognition is not None:
            self._hosted_session = self.cognition.create_session(self.agent, self.mode, self.sampling)
        else:
            self._hosted_session = None

    def set_pathway(self, pathway: Pathway) -> bool:
        if pathway is Pathway.HOSTED and not self.hosted_available:
            log.warning("Cannot switch to hosted pathway: %s", self.hosted_unavailable_reason)
            return False
        if pathway is not self.pathway:
            log.info("Switching pathway %s -> %s.", self.pathway.value, pathway.value)
        self.pathway = pathway
        self._rebuild_hosted_session()
        return True

    def set_mode(self, mode: Mode) -> None:
        self.mode = mode
        self._rebuild_hosted_session()

    def set_sampling(self, **changes: Any) -> SamplingSettings:
        self.sampling = replace(self.sampling, **changes)
        self._rebuild_hosted_session()
        return self.sampling

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send_message(self, text: str) -> ChatMessage | None:
        """Process one user message and return the agent's transcript entry.

        Raises:
            SessionBusyError: If a previous message has not finished.
        """
        self._require_agent()
        text = text.strip()
        if not text:
            return None
        if self._busy:
            raise SessionBusyError("A message is already being processed")

        self._busy = True
        self.suggested_memories = None
        try:
            self.transcript.add(USER, text)
            self.conversation_messages += 1
            if self.pathway is Pathway.HOSTED:
                reply = await self._send_hosted(text)
            else:
                reply = await self._send_native(text)
            self.conversation_messages += 1
        finally:
            self._busy = False
        self._schedule_consolidation()
        return reply

    async def _send_native(self, text: str) -> ChatMessage:
        slot = self.transcript.add(AGENT, "", type=OutcomeKind.LOCAL.value, is_processing=True)
        history = self.transcript.history(exclude=slot.id)
        result = await self.pipeline.process_message(text, self.agent, history, self.local)

        if isinstance(result, CommandOutcome):
            text_out, kind = result.response_text or "", result.kind.value
            if result.updated_knowledge is not None:
                try:
                    await self._apply_knowledge(result.updated_knowledge)
                except Exception as exc:  # noqa: BLE001
                    log.error("Could not save knowledge for %s: %s", self.agent.name, exc)
                    text_out, kind = f"{MEMORY_SAVE_FAILED} {exc}", OutcomeKind.ERROR.value
            self.transcript.update(slot.id, text=text_out, type=kind, is_processing=False)
            return slot

        self._active_stream = result
        try:
            async for fragment in result:
                self.transcript.append_to(slot.id, fragment)
        finally:
            self._active_stream = None
            await result.aclose()

        if result.error is not None:
            error_text = result.error.response_text or ""
            text_out = f"{slot.text}\n\n{error_text}" if slot.text else error_text
            self.transcript.update(slot.id, text=text_out, type=OutcomeKind.ERROR.value, is_processing=False)
        else:
            self.transcript.update(slot.id, is_processing=False)
        return slot

    async def _send_hosted(self, text: str) -> ChatMessage:
        if self.cognition is None:
            raise RuntimeError("Hosted pathway has no cognition client")
        if self._hosted_session is None:
            self._rebuild_hosted_session()
        slot = self.transcript.add(AGENT, "", type="standard", is_processing=True)
        try:
            reply = await self._hosted_session.send(text)
        except Exception as exc:
            log.warning("Hosted reply failed: %s", exc)
            explanation = await self.cognition.analyze_failure(text, exc)
            self.transcript.update(slot.id, text=explanation, type=OutcomeKind.ERROR.value, is_processing=False)
            return slot

        self.transcript.update(slot.id, text=reply, is_processing=False)
        await self._learn_from_exchange(text, reply)
        return slot

    async def _learn_from_exchange(self, user_text: str, agent_text: str) -> None:
        agent = self._require_agent()
        try:
            learned = await self.cognition.summarize_learnings(user_text, agent_text)
        except Exception as exc:  # noqa: BLE001
            log.warning("Learning extraction failed: %s", exc)
            return
        if not learned or learned in agent.knowledge_base:
            return
        try:
            await self.store.add(agent.name, learned)
            await self._refresh_mirror()
        except Exception as exc:  # noqa: BLE001
            log.error("Could not store learned fact for %s: %s", agent.name, exc)
            return
        log.info("Learned from exchange: %s", learned[:80])

    async def cancel_active_stream(self) -> bool:
        """Stop the native answer currently streaming, if any."""
        stream = self._active_stream
        if stream is None:
            return False
        stream.cancel()
        return True

    # ------------------------------------------------------------------
    # Consolidation
    # ------------------------------------------------------------------

    def _schedule_consolidation(self) -> None:
        if not self.schedule.is_due(self.conversation_messages):
            return
        if self.consolidator is None:
            log.debug("Consolidation due but no distiller is configured.")
            return
        if self._consolidation_task is not None and not self._consolidation_task.done():
            log.debug("Consolidation already running, skipping.")
            return
        agent = self._require_agent()
        if len(agent.knowledge_base) < self.consolidator.min_entries:
            log.debug("Consolidation due but only %d entries.", len(agent.knowledge_base))
            return
        self.transcript.system(CONSOLIDATION_STARTED, type=OutcomeKind.COGNITION.value)
        self._consolidation_task = self._spawn(self._consolidate(agent))

    async def _consolidate(self, snapshot: AgentProfile) -> None:
        try:
            distilled = await self.consolidator.consolidate(snapshot.knowledge_base)
        except ConsolidationError as exc:
            log.warning("Consolidation failed for %s: %s", snapshot.name, exc)
            self.transcript.system(CONSOLIDATION_FAILED, type=OutcomeKind.ERROR.value)
            return

        async with self._knowledge_lock:
            current = self.agent
            if current is None or current.name != snapshot.name:
                log.info("Agent changed during consolidation, discarding result.")
                return
            if distilled == current.knowledge_base:
                return
            await self.store.reconcile(current.name, distilled)
            self.agent = current.with_knowledge(distilled)
        self._rebuild_hosted_session()
        self.transcript.system(CONSOLIDATION_DONE, type=OutcomeKind.COGNITION.value)

    # ------------------------------------------------------------------
    # Conversation analysis
    # ------------------------------------------------------------------

    async def analyze_conversation(self) -> list[str] | None:
        """Ask the hosted model which facts from the transcript are worth keeping."""
        if self.cognition is None:
            return None
        self.suggested_memories = None
        try:
            self.suggested_memories = await self.cognition.extract_knowledge(self.transcript.messages)
        except Exception as exc:  # noqa: BLE001
            log.error("Conversation analysis failed: %s", exc)
            self.transcript.system(ANALYSIS_FAILED, type=OutcomeKind.ERROR.value)
        return self.suggested_memories

    def _drop_suggestion(self, memory: str) -> None:
        if self.suggested_memories is not None:
            self.suggested_memories = [m for m in self.suggested_memories if m != memory]

    async def approve_memory(self, memory: str) -> None:
        agent = self._require_agent()
        await self.store.add(agent.name, memory)
        await self._refresh_mirror()
        self._drop_suggestion(memory)

    def reject_memory(self, memory: str) -> None:
        self._drop_suggestion(memory)

    def clear_suggestions(self) -> None:
        self.suggested_memories = None

    # ------------------------------------------------------------------
    # Local backend management
    # ------------------------------------------------------------------

    def _client(self) -> OllamaClient:
        if self._local_client is None:
            self._local_client = self._local_client_factory(self.local.url)
        return self._local_client

    async def set_local_url(self, url: str) -> None:
        if url == self.local.url:
            return
        if self._local_client is not None:
            await self._local_client.close()
            self._local_client = None
        self.local = replace(self.local, url=url, enabled=False)
        self.local_status = LocalBackendStatus()

    def select_local_model(self, model: str) -> None:
        self.local = replace(self.local, model=model)

    async def connect_local_backend(self) -> LocalBackendStatus:
        """Probe the local server and refresh its model list.

        The first listed model is selected when none is set.
        """
        self.local_status = LocalBackendStatus(state="pending")
        try:
            models = await self._client().list_models()
        except OllamaError as exc:
            log.warning("Local backend at %s unavailable: %s", self.local.url, exc)
            self.local_status = LocalBackendStatus(state="disconnected", error=str(exc))
            self.local = replace(self.local, enabled=False)
            return self.local_status

        model = self.local.model or (models[0].model if models else "")
        self.local = replace(self.local, model=model, enabled=True)
        self.local_status = LocalBackendStatus(state="connected", models=models)
        log.info("Connected to local backend at %s (%d models, using %r).", self.local.url, len(models), model)
        return self.local_status

    async def pull_model(self, model: str) -> AsyncIterator[PullProgress]:
        """Pull *model*, yielding progress, then refresh the model list."""
        try:
            async for progress in self._client().pull_model(model):
                yield progress
        finally:
            await self.connect_local_backend()

    async def delete_model(self, model: str) -> None:
        try:
            await self._client().delete_model(model)
        except OllamaError as exc:
            self.local_status.error = str(exc)
            raise
        if self.local.model == model:
            self.local = replace(self.local, model="")
        await self.connect_local_backend()
