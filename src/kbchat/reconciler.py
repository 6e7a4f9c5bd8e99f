"""Reassemble streamed chat chunks into a single reply.

The ADK chat endpoint streams one JSON object per ``data:`` line. Partial
chunks carry the next slice of text and are appended; the closing chunk
(``partial: false``) carries the whole reply and replaces what was
accumulated. The upstream may redeliver the chunk it just sent, so a chunk
repeating the previous message ID is dropped.

State transitions are pure functions over :class:`ReconciliationState`;
:class:`StreamReconciler` applies them and fires the caller's callbacks,
resolving each call exactly once.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable

from .errors import ParseError
from .sse import DONE_SENTINEL

logger = logging.getLogger(__name__)

StreamCallback = Callable[[str], None]


class ReconcilerPhase(str, Enum):
    AWAITING_FIRST_CHUNK = "awaiting_first_chunk"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in {ReconcilerPhase.COMPLETED, ReconcilerPhase.ERRORED}


@dataclass(frozen=True, slots=True)
class StreamChunk:
    """One decoded event from the chat stream."""

    message_id: str
    text: str
    is_partial: bool
    session_id: str | None = None

    @property
    def has_content(self) -> bool:
        return bool(self.message_id) and bool(self.text)

    @classmethod
    def from_payload(cls, data: Any) -> "StreamChunk":
        """Build a chunk from the wire shape.

        ``{"session": ..., "data": {"id": ..., "partial": ...,
        "content": {"parts": [{"text": ...}]}}}``. Events without an ID or
        text (tool activity, state deltas) come back with ``has_content``
        false so only their session is considered.
        """

        if not isinstance(data, dict):
            raise ParseError(f"Expected a JSON object, got {type(data).__name__}")
        session = data.get("session")
        body = data.get("data") or {}
        if not isinstance(body, dict):
            raise ParseError("Chunk 'data' field must be an object")
        content = body.get("content") or {}
        parts = content.get("parts") if isinstance(content, dict) else None
        text = ""
        if isinstance(parts, list) and parts and isinstance(parts[0], dict):
            text = str(parts[0].get("text") or "")
        message_id = body.get("id")
        return cls(
            message_id=str(message_id) if message_id is not None else "",
            text=text,
            is_partial=bool(body.get("partial", False)),
            session_id=str(session) if session else None,
        )


def parse_chunk(payload: str) -> StreamChunk:
    """Decode one ``data:`` payload, raising :class:`ParseError` if malformed."""

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Invalid JSON in stream payload: {exc}", payload=payload) from exc
    try:
        return StreamChunk.from_payload(data)
    except ParseError as exc:
        exc.payload = payload
        raise


@dataclass(frozen=True, slots=True)
class ReconciliationState:
    phase: ReconcilerPhase = ReconcilerPhase.AWAITING_FIRST_CHUNK
    accumulated_text: str = ""
    last_message_id: str = ""
    session_id: str | None = None
    error: str | None = None

    @property
    def completed(self) -> bool:
        return self.phase.is_terminal


class Emit(str, Enum):
    NONE = "none"
    STREAM_DATA = "stream_data"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Transition:
    state: ReconciliationState
    emit: Emit = Emit.NONE
    value: str = ""


def apply_chunk(state: ReconciliationState, chunk: StreamChunk) -> Transition:
    if state.completed:
        return Transition(state)
    if not chunk.has_content:
        if chunk.session_id and state.session_id is None:
            return Transition(replace(state, session_id=chunk.session_id))
        return Transition(state)
    if chunk.message_id == state.last_message_id:
        return Transition(state)

    session_id = state.session_id if state.session_id is not None else chunk.session_id
    if not chunk.is_partial:
        final = replace(
            state,
            phase=ReconcilerPhase.COMPLETED,
            accumulated_text=chunk.text,
            last_message_id=chunk.message_id,
            session_id=session_id,
        )
        return Transition(final, Emit.COMPLETE, final.accumulated_text)

    streaming = replace(
        state,
        phase=ReconcilerPhase.STREAMING,
        accumulated_text=state.accumulated_text + chunk.text,
        last_message_id=chunk.message_id,
        session_id=session_id,
    )
    return Transition(streaming, Emit.STREAM_DATA, streaming.accumulated_text)


def apply_done(state: ReconciliationState) -> Transition:
    """Handle the ``[DONE]`` sentinel or the end of the stream."""

    if state.completed:
        return Transition(state)
    final = replace(state, phase=ReconcilerPhase.COMPLETED)
    return Transition(final, Emit.COMPLETE, final.accumulated_text)


def apply_error(state: ReconciliationState, message: str) -> Transition:
    if state.completed:
        return Transition(state)
    failed = replace(state, phase=ReconcilerPhase.ERRORED, error=message)
    return Transition(failed, Emit.ERROR, message)


@dataclass(slots=True)
class ChatResult:
    success: bool
    content: str
    session_id: str | None = None
    error: str | None = None
    response_time_ms: int = 0


def _noop(_: str) -> None:
    return None


class StreamReconciler:
    """Drive one chat call from raw payloads to a :class:`ChatResult`."""

    def __init__(
        self,
        *,
        on_stream_data: StreamCallback | None = None,
        on_complete: StreamCallback | None = None,
        on_error: StreamCallback | None = None,
        requested_session_id: str | None = None,
        started_at: float | None = None,
    ) -> None:
        self._on_stream_data = on_stream_data or _noop
        self._on_complete = on_complete or _noop
        self._on_error = on_error or _noop
        self._requested_session_id = requested_session_id
        self._started_at = time.perf_counter() if started_at is None else started_at
        self._state = ReconciliationState()
        self._resolved = False

    @property
    def state(self) -> ReconciliationState:
        return self._state

    @property
    def resolved(self) -> bool:
        return self._resolved

    def feed(self, payload: str) -> None:
        """Apply one raw ``data:`` payload."""

        if self._resolved:
            return
        if payload == DONE_SENTINEL:
            logger.debug("adk.chat.stream.done_signal")
            self._apply(apply_done(self._state))
            return
        try:
            chunk = parse_chunk(payload)
        except ParseError as exc:
            logger.warning("adk.chat.chunk.parse_failed error=%s payload=%s", exc, payload[:200])
            return
        if chunk.has_content and chunk.message_id == self._state.last_message_id:
            logger.debug("adk.chat.chunk.duplicate message_id=%s", chunk.message_id)
        else:
            logger.debug(
                "adk.chat.chunk message_id=%s partial=%s chars=%s",
                chunk.message_id,
                chunk.is_partial,
                len(chunk.text),
            )
        self._apply(apply_chunk(self._state, chunk))

    def finish(self) -> None:
        """Signal end of stream; completes with the accumulated text if needed."""

        if self._resolved:
            return
        logger.debug("adk.chat.stream.eof chars=%s", len(self._state.accumulated_text))
        self._apply(apply_done(self._state))

    def fail(self, message: str) -> None:
        if self._resolved:
            return
        self._apply(apply_error(self._state, message or "Unknown streaming error"))

    def result(self) -> ChatResult:
        state = self._state
        elapsed_ms = int(round((time.perf_counter() - self._started_at) * 1000))
        session_id = state.session_id or self._requested_session_id
        if state.phase is ReconcilerPhase.ERRORED:
            return ChatResult(
                success=False,
                content=state.accumulated_text,
                session_id=session_id,
                error=state.error,
                response_time_ms=elapsed_ms,
            )
        return ChatResult(
            success=state.phase is ReconcilerPhase.COMPLETED,
            content=state.accumulated_text,
            session_id=session_id,
            response_time_ms=elapsed_ms,
        )

    def _apply(self, transition: Transition) -> None:
        self._state = transition.state
        if transition.emit is Emit.STREAM_DATA:
            self._on_stream_data(transition.value)
        elif transition.emit is Emit.COMPLETE:
            self._resolved = True
            self._on_complete(transition.value)
        elif transition.emit is Emit.ERROR:
            self._resolved = True
            self._on_error(transition.value)


__all__ = [
    "ChatResult",
    "Emit",
    "ReconcilerPhase",
    "ReconciliationState",
    "StreamChunk",
    "StreamReconciler",
    "Transition",
    "apply_chunk",
    "apply_done",
    "apply_error",
    "parse_chunk",
]
