"""Streaming chat client for the ADK knowledge agent."""

from __future__ import annotations

import logging
import time
from contextlib import closing, nullcontext
from dataclasses import dataclass, field
from typing import Any, Callable, ContextManager, Iterator
from uuid import uuid4

import httpx

from .config import Settings
from .errors import ChatTimeoutError, TransportError
from .observability import MetricsRecorder
from .reconciler import ChatResult, StreamCallback, StreamReconciler
from .sse import iter_sse_payloads

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str | None]


@dataclass(slots=True)
class ChatInput:
    question: str
    user_id: str
    session_id: str | None = None
    knowledge_ids: list[str] = field(default_factory=list)
    online_mode: bool = True

    def to_request(self) -> dict[str, Any]:
        """Serialize to the JSON body expected by ``POST /api/chat``."""

        return {
            "userId": self.user_id,
            "sessionId": self.session_id or None,
            "knowledgeIds": list(self.knowledge_ids),
            "message": self.question,
            "onlineMode": self.online_mode,
        }


class AdkChatService:
    """Send chat turns to the ADK agent and stream the reply back."""

    def __init__(
        self,
        settings: Settings,
        *,
        token_provider: TokenProvider | None = None,
        client: httpx.Client | None = None,
        metrics: MetricsRecorder | None = None,
        mock_word_delay: float = 0.05,
    ) -> None:
        self._settings = settings
        self._token_provider = token_provider
        self._client = client
        self._metrics = metrics
        self._mock_word_delay = max(0.0, mock_word_delay)

    def send_message_with_streaming(
        self,
        chat_input: ChatInput,
        on_stream_data: StreamCallback,
        on_complete: StreamCallback,
        on_error: StreamCallback,
    ) -> ChatResult:
        """Send one turn and stream the reply through the callbacks.

        ``on_stream_data`` receives the cumulative text after each new
        partial chunk. Exactly one of ``on_complete`` or ``on_error`` is
        called. Transport failures and timeouts never raise; they resolve
        the returned result with ``success=False``.
        """

        started = time.perf_counter()
        logger.info(
            "adk.chat.send user=%s session=%s knowledge=%s online=%s mock=%s",
            chat_input.user_id,
            chat_input.session_id,
            len(chat_input.knowledge_ids),
            chat_input.online_mode,
            self._settings.adk_use_mock,
        )
        if self._metrics:
            self._metrics.increment("chat.stream_requests", mock=self._settings.adk_use_mock)

        if self._settings.adk_use_mock:
            result = self._simulate_streaming(chat_input, on_stream_data, on_complete, started)
            self._record_result(result)
            return result

        reconciler = StreamReconciler(
            on_stream_data=on_stream_data,
            on_complete=on_complete,
            on_error=on_error,
            requested_session_id=chat_input.session_id,
            started_at=started,
        )
        try:
            with closing(self._stream_payloads(chat_input)) as payloads:
                for payload in payloads:
                    reconciler.feed(payload)
                    if reconciler.resolved:
                        break
        except TransportError as exc:
            logger.error(
                "adk.chat.stream.error type=%s status=%s error=%s received_chars=%s",
                type(exc).__name__,
                exc.status_code,
                exc,
                len(reconciler.state.accumulated_text),
            )
            reconciler.fail(str(exc))
        else:
            reconciler.finish()

        result = reconciler.result()
        logger.info(
            "adk.chat.completed success=%s session=%s chars=%s duration_ms=%s",
            result.success,
            result.session_id,
            len(result.content),
            result.response_time_ms,
        )
        self._record_result(result)
        return result

    def send_message(self, chat_input: ChatInput) -> ChatResult:
        """Send one turn and return only the final result."""

        return self.send_message_with_streaming(
            chat_input,
            on_stream_data=lambda _: None,
            on_complete=lambda _: None,
            on_error=lambda _: None,
        )

    def check_health(self) -> bool:
        try:
            with self._open_client() as client:
                response = client.get(
                    self._settings.adk_health_url,
                    headers={"Accept": "application/json", **self._auth_headers()},
                )
        except httpx.HTTPError as exc:
            logger.warning("adk.health.failed error=%s", exc)
            return False
        healthy = response.is_success
        logger.info("adk.health status=%s healthy=%s", response.status_code, healthy)
        return healthy

    # Internal helpers -------------------------------------------------

    def _stream_payloads(self, chat_input: ChatInput) -> Iterator[str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
            **self._auth_headers(),
        }
        url = self._settings.adk_chat_url
        try:
            with self._open_client() as client:
                with client.stream("POST", url, json=chat_input.to_request(), headers=headers) as response:
                    if response.status_code >= 400:
                        response.read()
                        raise TransportError(
                            f"HTTP {response.status_code}: {response.reason_phrase}",
                            status_code=response.status_code,
                        )
                    yield from iter_sse_payloads(response.iter_bytes())
        except httpx.TimeoutException as exc:
            raise ChatTimeoutError(
                f"No response from chat service within {self._settings.adk_timeout:g}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Chat connection failed: {exc}") from exc

    def _open_client(self) -> ContextManager[httpx.Client]:
        if self._client is not None:
            return nullcontext(self._client)
        return httpx.Client(timeout=self._settings.adk_timeout_config())

    def _auth_headers(self) -> dict[str, str]:
        token: str | None
        if self._token_provider is not None:
            try:
                token = self._token_provider()
            except Exception as exc:
                logger.warning("adk.auth.token_failed error=%s", exc)
                return {}
        else:
            token = self._settings.adk_access_token
        if not token:
            logger.warning("adk.auth.token_missing")
            return {}
        return {"Authorization": f"Bearer {token}"}

    def _simulate_streaming(
        self,
        chat_input: ChatInput,
        on_stream_data: StreamCallback,
        on_complete: StreamCallback,
        started: float,
    ) -> ChatResult:
        reply = (
            f'Here is what the knowledge base says about "{chat_input.question}": '
            "the key facts, the recommended practice, and a worked example."
        )
        current = ""
        for index, word in enumerate(reply.split(" ")):
            current = word if index == 0 else f"{current} {word}"
            on_stream_data(current)
            if self._mock_word_delay:
                time.sleep(self._mock_word_delay)
        on_complete(current)
        return ChatResult(
            success=True,
            content=current,
            session_id=chat_input.session_id or f"mock-session-{uuid4().hex[:12]}",
            response_time_ms=int(round((time.perf_counter() - started) * 1000)),
        )

    def _record_result(self, result: ChatResult) -> None:
        metrics = self._metrics
        if not metrics:
            return
        if result.success:
            metrics.increment("chat.responses")
        else:
            metrics.increment("chat.errors")
        metrics.record_timing(
            "chat.response_duration",
            result.response_time_ms / 1000.0,
            success=result.success,
        )


__all__ = ["AdkChatService", "ChatInput", "TokenProvider"]
