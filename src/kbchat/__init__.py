"""Client library for a knowledge-base chat agent and its document services."""

from __future__ import annotations

from .adk_chat import AdkChatService, ChatInput
from .config import Settings
from .conversation import ChatConversation, ChatMessage, KnowledgeBaseSelection
from .errors import ApiError, ChatTimeoutError, KbChatError, ParseError, TransportError
from .reconciler import ChatResult, StreamReconciler

__all__ = [
    "AdkChatService",
    "ApiError",
    "ChatConversation",
    "ChatHistoryService",
    "ChatInput",
    "ChatMessage",
    "ChatResult",
    "ChatTimeoutError",
    "DocumentIngestionClient",
    "KbChatError",
    "KnowledgeBaseSelection",
    "ParseError",
    "Settings",
    "StreamReconciler",
    "TransportError",
]


def __getattr__(name: str):  # pragma: no cover - small helper
    if name == "ChatHistoryService":
        from .history import ChatHistoryService

        return ChatHistoryService
    if name == "DocumentIngestionClient":
        from .ingestion import DocumentIngestionClient

        return DocumentIngestionClient
    raise AttributeError(f"module 'kbchat' has no attribute {name}")
