"""Client-side state for one chat window."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Literal, Sequence
from uuid import uuid4

from .adk_chat import AdkChatService, ChatInput

logger = logging.getLogger(__name__)

MessageRole = Literal["user", "assistant"]
ConnectionStatus = Literal["connected", "connecting", "error"]

WELCOME_MESSAGE = (
    "Hello! I can help you find information in your knowledge bases.\n\n"
    "Select the knowledge bases you want to ask about, or select all of them "
    "to search everything.\n\nThen go ahead and ask your question."
)
NO_KNOWLEDGE_BASE_MESSAGE = "Please select at least one knowledge base before asking a question."
NO_USER_MESSAGE = "We could not identify your account. Please sign in again."


@dataclass(slots=True)
class ChatMessage:
    id: str
    role: MessageRole
    content: str
    timestamp: str | None = None
    knowledge_bases: list[str] = field(default_factory=list)
    session_id: str | None = None
    response_time_ms: int | None = None
    is_streaming: bool = False
    online_mode: bool | None = None


@dataclass(slots=True)
class KnowledgeBaseSelection:
    id: str
    name: str
    selected: bool = True
    document_count: int = 0


class ChatConversation:
    """Message list, typing flag and session continuity for one chat window.

    The first successful turn adopts the session ID assigned by the server;
    later turns send it back so the agent keeps the conversation context.
    """

    def __init__(
        self,
        service: AdkChatService,
        *,
        user_id_provider: Callable[[], str | None],
        welcome_message: str = WELCOME_MESSAGE,
    ) -> None:
        self._service = service
        self._user_id_provider = user_id_provider
        self._welcome_message = welcome_message
        self._user_id: str | None = None
        self.messages: list[ChatMessage] = []
        self.is_typing = False
        self.connection_status: ConnectionStatus = "connected"
        self.current_session_id: str | None = None

    def add_message(self, message: ChatMessage) -> None:
        self.messages.append(message)

    def update_message(self, message_id: str, content: str, *, complete: bool = False) -> None:
        self.messages = [
            replace(message, content=content, is_streaming=not complete)
            if message.id == message_id
            else message
            for message in self.messages
        ]

    def find_message(self, message_id: str) -> ChatMessage | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def add_welcome_message(self) -> None:
        self.messages = [self._assistant_message(self._welcome_message)]

    def create_new_chat(self) -> None:
        self.current_session_id = None
        self.is_typing = False
        self.connection_status = "connected"
        self.add_welcome_message()

    def send_message(
        self,
        content: str,
        selected_knowledge_bases: Sequence[KnowledgeBaseSelection],
        *,
        online_mode: bool = False,
    ) -> ChatMessage | None:
        """Send ``content`` and return the assistant message that holds the reply."""

        if not content.strip():
            return None
        if not selected_knowledge_bases:
            self.add_message(self._assistant_message(NO_KNOWLEDGE_BASE_MESSAGE))
            return None

        user_id = self._resolve_user_id()
        if not user_id:
            self.add_message(self._assistant_message(NO_USER_MESSAGE))
            return None

        self.add_message(
            ChatMessage(
                id=uuid4().hex,
                role="user",
                content=content,
                timestamp=_utc_now(),
                knowledge_bases=[kb.name for kb in selected_knowledge_bases],
                online_mode=online_mode,
            )
        )
        reply = self._assistant_message("", streaming=True)
        self.add_message(reply)
        self.is_typing = True
        self.connection_status = "connecting"

        def on_stream_data(text: str) -> None:
            self.update_message(reply.id, text)

        def on_complete(text: str) -> None:
            self.update_message(reply.id, text, complete=True)
            self.connection_status = "connected"
            self.is_typing = False

        def on_error(error: str) -> None:
            apology = f"Sorry, something went wrong: {error}"
            current = self.find_message(reply.id)
            # streamed text stays visible above the apology
            if current is not None and current.content:
                apology = f"{current.content}\n\n{apology}"
            self.update_message(reply.id, apology, complete=True)
            self.connection_status = "error"
            self.is_typing = False

        result = self._service.send_message_with_streaming(
            ChatInput(
                question=content,
                user_id=user_id,
                session_id=self.current_session_id,
                knowledge_ids=[kb.id for kb in selected_knowledge_bases],
                online_mode=online_mode,
            ),
            on_stream_data,
            on_complete,
            on_error,
        )

        if result.session_id and not self.current_session_id:
            logger.info("chat.session.adopted session=%s", result.session_id)
            self.current_session_id = result.session_id

        final = self.find_message(reply.id)
        if final is None:
            return None
        final = replace(
            final,
            session_id=result.session_id,
            response_time_ms=result.response_time_ms,
        )
        self.messages = [final if message.id == reply.id else message for message in self.messages]
        return final

    def _resolve_user_id(self) -> str | None:
        if self._user_id:
            return self._user_id
        try:
            user_id = self._user_id_provider()
        except Exception as exc:
            logger.warning("chat.user.lookup_failed error=%s", exc)
            return None
        if user_id:
            self._user_id = user_id
        return user_id

    @staticmethod
    def _assistant_message(content: str, *, streaming: bool = False) -> ChatMessage:
        return ChatMessage(
            id=uuid4().hex,
            role="assistant",
            content=content,
            timestamp=_utc_now(),
            is_streaming=streaming,
        )


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


__all__ = [
    "ChatConversation",
    "ChatMessage",
    "ConnectionStatus",
    "KnowledgeBaseSelection",
    "MessageRole",
]
