"""Conversation orchestration over the provider registry."""

from .orchestrator import ConversationOrchestrator, TurnResult
from .replies import FreeformReply, StructuredReply, parse_reply
from .sessions import SessionStore

__all__ = [
    "ConversationOrchestrator",
    "FreeformReply",
    "SessionStore",
    "StructuredReply",
    "TurnResult",
    "parse_reply",
]
