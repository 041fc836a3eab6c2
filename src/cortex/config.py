"""Runtime settings for Agent Cortex.

Every knob is an environment variable, parsed and range-checked by
``pydantic-settings``.  ``python -m cortex`` loads ``config/.env`` and
``.env`` before the first :func:`get_settings` call, so values from those
files apply as well.

Nothing is mandatory.  Without an OpenRouter key the hosted pathway is
off and sessions run natively; without an Ollama model the first one the
server lists is used.
"""

from __future__ import annotations

import functools
import logging
from typing import ClassVar

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

MEMORY_BACKENDS: frozenset[str] = frozenset({"memory", "file", "redis"})


class CortexSettings(BaseSettings):
    """All configurable values, grouped by the component that reads them."""

    model_config = SettingsConfigDict(
        # .env loading is handled by load_dotenv() in __main__.py.
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Hosted pathway (OpenRouter)
    # ------------------------------------------------------------------
    OPENROUTER_API_KEY: str | None = Field(
        default=None,
        description="API key for OpenRouter.  Enables the hosted pathway.",
    )
    HOSTED_MODEL: str = Field(
        default="google/gemini-2.5-flash",
        description="OpenRouter model used for hosted chat and cognition calls.",
    )

    # ------------------------------------------------------------------
    # Local models (Ollama)
    # ------------------------------------------------------------------
    OLLAMA_BASE_URL: str = Field(
        default="http://localhost:11434",
        description="Base URL for a local Ollama instance.",
    )
    OLLAMA_MODEL: str = Field(
        default="",
        description=(
            "Model used for retrieval-augmented generation.  When empty the "
            "first model reported by the server is selected on connect."
        ),
    )

    # ------------------------------------------------------------------
    # Memory persistence
    # ------------------------------------------------------------------
    MEMORY_BACKEND: str = Field(
        default="file",
        description="Persistence backend: 'memory', 'file' or 'redis'.",
    )
    MEMORY_FILE_PATH: str = Field(
        default="data/memory.json",
        description="JSON file used by the 'file' memory backend.",
    )
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL used by the 'redis' memory backend.",
    )

    # ------------------------------------------------------------------
    # Intent classification (Tier 2)
    # ------------------------------------------------------------------
    INTENT_ENABLED: bool = Field(
        default=True,
        description="Load the zero-shot intent classifier at startup.",
    )
    INTENT_MODEL: str = Field(
        default="MoritzLaurer/deberta-v3-base-zeroshot-v1.1-all-33",
        description="Hugging Face model id for zero-shot classification.",
    )
    INTENT_CONFIDENCE: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Minimum top-label score for an intent to be accepted.",
    )

    # ------------------------------------------------------------------
    # Retrieval (Tier 3)
    # ------------------------------------------------------------------
    RETRIEVAL_THRESHOLD: float = Field(default=0.1, ge=0.0, le=1.0)
    RETRIEVAL_TOP_K: int = Field(default=5, ge=1)
    HISTORY_WINDOW: int = Field(
        default=10,
        ge=0,
        description="Number of recent transcript turns included in the prompt.",
    )

    # ------------------------------------------------------------------
    # Consolidation
    # ------------------------------------------------------------------
    CONSOLIDATION_INTERVAL: int = Field(default=10, ge=1)
    CONSOLIDATION_MIN_MESSAGES: int = Field(default=5, ge=0)
    CONSOLIDATION_MIN_ENTRIES: int = Field(default=3, ge=1)

    # ------------------------------------------------------------------
    # Hosted sampling defaults
    # ------------------------------------------------------------------
    TEMPERATURE: float = Field(default=0.7, ge=0.0, le=2.0)
    TOP_P: float = Field(default=0.95, ge=0.0, le=1.0)
    TOP_K: int = Field(default=40, ge=1)

    @field_validator("MEMORY_BACKEND", mode="before")
    @classmethod
    def _check_memory_backend(cls, value: str) -> str:
        backend = str(value).strip().lower()
        if backend not in MEMORY_BACKENDS:
            raise ValueError(
                f"MEMORY_BACKEND must be one of {sorted(MEMORY_BACKENDS)}, got {value!r}"
            )
        return backend

    @property
    def hosted_configured(self) -> bool:
        return bool(self.OPENROUTER_API_KEY)

    # Never printed by repr().
    _SENSITIVE_FIELDS: ClassVar[set[str]] = {"OPENROUTER_API_KEY"}

    def __repr__(self) -> str:
        fields = []
        for name in type(self).model_fields:
            val = getattr(self, name)
            if name in self._SENSITIVE_FIELDS:
                val = "***" if val else None
            fields.append(f"{name}={val!r}")
        return f"CortexSettings({', '.join(fields)})"


@functools.lru_cache(maxsize=1)
def get_settings() -> CortexSettings:
    """Build the settings once and hand the same instance out afterwards.

    Tests that change the environment call ``get_settings.cache_clear()``.
    """
    logger.debug("Reading CortexSettings from the environment.")
    return CortexSettings()
