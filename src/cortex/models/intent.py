"""Zero-shot text classification backend for conversational intents.

:class:`ZeroShotClassifier` wraps a Hugging Face ``zero-shot-classification``
pipeline behind an explicit lifecycle:

1. :meth:`~ZeroShotClassifier.start` schedules loading in the background
   (or :meth:`~ZeroShotClassifier.initialize` loads and awaits it).
2. :meth:`~ZeroShotClassifier.wait_ready` lets callers await readiness.
3. :meth:`~ZeroShotClassifier.close` drops the model.

Until the model is loaded, :meth:`~ZeroShotClassifier.classify` returns
``None`` -- "not loaded" is a normal state, not an error.  A failed load
(missing ``transformers`` install, no network, bad model id) leaves the
classifier permanently unavailable and is logged once.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class IntentPrediction:
    """One ranked label from the classifier."""

    label: str
    score: float


@runtime_checkable
class IntentBackend(Protocol):
    """Structural type for anything that can rank candidate labels."""

    @property
    def is_ready(self) -> bool:
        ...

    async def classify(self, text: str, labels: list[str]) -> list[IntentPrediction] | None:
        """Rank *labels* for *text*, best first; ``None`` if unavailable."""
        ...


class ZeroShotClassifier:
    """Lazily loaded ``transformers`` zero-shot pipeline.

    Args:
        model_name: Hugging Face model id of an NLI model.
        device: Torch device index; ``-1`` runs on CPU.
    """

    def __init__(self, model_name: str, device: int = -1) -> None:
        self.model_name = model_name
        self._device = device
        self._pipeline: Any = None
        self._load_task: asyncio.Task[bool] | None = None
        self._failed = False

    @property
    def is_ready(self) -> bool:
        return self._pipeline is not None

    @property
    def failed(self) -> bool:
        return self._failed

    def _load(self) -> Any:
        try:
            from transformers import pipeline
        except ImportError as exc:
            raise ImportError(
                "transformers is required for intent classification "
                "(pip install 'agent-cortex[nlp]')"
            ) from exc
        return pipeline("zero-shot-classification", model=self.model_name, device=self._device)

    async def _load_in_background(self) -> bool:
        try:
            self._pipeline = await asyncio.to_thread(self._load)
        except Exception as exc:  # noqa: BLE001
            self._failed = True
            logger.warning("Intent model %s failed to load: %s", self.model_name, exc)
            return False
        logger.info("Intent model %s loaded.", self.model_name)
        return True

    def start(self) -> None:
        """Begin loading in the background.  Idempotent."""
        if self._load_task is None and not self.is_ready:
            logger.info("Loading intent model %s in the background...", self.model_name)
            self._load_task = asyncio.get_running_loop().create_task(self._load_in_background())

    async def initialize(self) -> bool:
        """Load the model (if not already loading) and wait for it."""
        self.start()
        return await self.wait_ready()

    async def wait_ready(self, timeout: float | None = None) -> bool:
        """Wait for an in-flight load.  Returns readiness."""
        if self._load_task is None:
            return self.is_ready
        try:
            await asyncio.wait_for(asyncio.shield(self._load_task), timeout)
        except asyncio.TimeoutError:
            return False
        return self.is_ready

    async def classify(self, text: str, labels: list[str]) -> list[IntentPrediction] | None:
        if not self.is_ready or not labels:
            return None
        try:
            result = await asyncio.to_thread(
                self._pipeline, text, candidate_labels=labels, multi_label=False,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Intent classification failed: %s", exc)
            return None
        return [
            IntentPrediction(label=label, score=float(score))
            for label, score in zip(result["labels"], result["scores"])
        ]

    async def close(self) -> None:
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self._load_task = None
        self._pipeline = None

    def __repr__(self) -> str:
        return f"ZeroShotClassifier(model_name={self.model_name!r}, ready={self.is_ready})"
