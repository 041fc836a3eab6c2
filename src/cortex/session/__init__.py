"""Agent sessions: transcript, hosted cognition, and the session orchestrator."""

from cortex.session.cognition import BASELINE_PERSONA, HostedChatSession, HostedCognition
from cortex.session.orchestrator import (
    LocalBackendStatus,
    Pathway,
    SessionBusyError,
    SessionOrchestrator,
)
from cortex.session.transcript import ChatMessage, Transcript

__all__ = [
    "BASELINE_PERSONA",
    "ChatMessage",
    "HostedChatSession",
    "HostedCognition",
    "LocalBackendStatus",
    "Pathway",
    "SessionBusyError",
    "SessionOrchestrator",
    "Transcript",
]
