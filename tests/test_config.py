"""Tests for config validation and repr redaction."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from cortex.config import CortexSettings


def test_defaults_without_environment():
    with patch.dict(os.environ, {}, clear=True):
        settings = CortexSettings()
        assert settings.OPENROUTER_API_KEY is None
        assert settings.hosted_configured is False
        assert settings.OLLAMA_BASE_URL == "http://localhost:11434"
        assert settings.INTENT_CONFIDENCE == 0.85
        assert settings.RETRIEVAL_THRESHOLD == 0.1
        assert settings.RETRIEVAL_TOP_K == 5
        assert settings.CONSOLIDATION_MIN_ENTRIES == 3


def test_memory_backend_normalised():
    with patch.dict(os.environ, {"MEMORY_BACKEND": " Redis "}, clear=True):
        assert CortexSettings().MEMORY_BACKEND == "redis"


def test_invalid_memory_backend_raises():
    with patch.dict(os.environ, {"MEMORY_BACKEND": "sqlite"}, clear=True):
        with pytest.raises(ValidationError):
            CortexSettings()


def test_confidence_out_of_range_raises():
    with patch.dict(os.environ, {"INTENT_CONFIDENCE": "1.5"}, clear=True):
        with pytest.raises(ValidationError):
            CortexSettings()


def test_api_key_redacted_in_repr():
    with patch.dict(os.environ, {"OPENROUTER_API_KEY": "sk-secret-key"}, clear=True):
        settings = CortexSettings()
        r = repr(settings)
        assert "sk-secret-key" not in r
        assert "OPENROUTER_API_KEY='***'" in r
        assert settings.hosted_configured is True


def test_missing_api_key_shows_none_in_repr(monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    assert "OPENROUTER_API_KEY=None" in repr(CortexSettings())
