"""Model backends: local Ollama generation, hosted OpenRouter chat, intent classification."""

from cortex.models.intent import IntentBackend, IntentPrediction, ZeroShotClassifier
from cortex.models.ollama import (
    GenerationStream,
    LocalModel,
    OllamaClient,
    OllamaError,
    OllamaModelError,
    OllamaUnavailableError,
    PullProgress,
)
from cortex.models.openrouter import ChatResponse, OpenRouterClient, OpenRouterError

__all__ = [
    "ChatResponse",
    "GenerationStream",
    "IntentBackend",
    "IntentPrediction",
    "LocalModel",
    "OllamaClient",
    "OllamaError",
    "OllamaModelError",
    "OllamaUnavailableError",
    "OpenRouterClient",
    "OpenRouterError",
    "PullProgress",
    "ZeroShotClassifier",
]
