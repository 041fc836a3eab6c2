"""Agent Cortex -- an offline-capable conversational agent core."""

__version__ = "0.1.0"
