"""Conversation orchestration and result extraction."""

from jsonoracle.orchestration.orchestrator import ConversationOrchestrator

__all__ = ["ConversationOrchestrator"]
