"""Read and soft-delete stored chat sessions through the hosted database REST API."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from .config import Settings
from .conversation import ChatMessage
from .errors import ApiError
from .fallback import first_success
from .http import ApiClient

logger = logging.getLogger(__name__)

UNTITLED = "Untitled"

_SESSION_COLUMNS = "id,app_name,user_id,state,last_update_time,created_at,updated_at"
_EVENTS_EMBED = (
    "session_events!inner(id,session_id,event_data,timestamp,author,created_at,"
    "memories:id(id,user_id,app_name,content,timestamp,created_at,updated_at))"
)


@dataclass(slots=True)
class ChatSession:
    id: str
    user_id: str
    title: str
    message_count: int
    started_at: str
    ended_at: str | None = None


class ChatHistoryService:
    """List, reopen and delete past chat sessions.

    Sessions live in ``sessions`` with their turns in ``session_events``;
    each event that produced a visible message has a ``memories`` row with
    the same ID. Row-level security on the server decides what the caller
    may see.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        client: httpx.Client | None = None,
        token_provider: Callable[[], str | None] | None = None,
    ) -> None:
        self._token_provider = token_provider
        self._anon_key = settings.supabase_anon_key or ""
        self._api = ApiClient(
            settings.supabase_rest_url,
            service_name="history",
            timeout=settings.history_timeout,
            client=client,
        )

    def close(self) -> None:
        self._api.close()

    def load_history(self) -> list[ChatSession]:
        """Return the caller's sessions, newest first."""

        outcome = first_success(
            [
                ("sessions_with_events", self._load_sessions_with_events),
                ("sessions_only", self._load_sessions_only),
            ],
            catch=(ApiError,),
        )
        if not outcome.succeeded:
            logger.error("history.load.failed attempts=%s", len(outcome.failures))
            return []
        sessions = outcome.value or []
        logger.info("history.load.completed strategy=%s sessions=%s", outcome.strategy, len(sessions))
        return sessions

    def get_session_messages(self, session_id: str) -> list[ChatMessage] | None:
        params = {
            "select": f"{_SESSION_COLUMNS},{_EVENTS_EMBED}",
            "id": f"eq.{session_id}",
            "session_events.memories": "not.is.null",
            "session_events.order": "timestamp.asc",
        }
        try:
            rows = self._api.get("/sessions", params=params, headers=self._headers())
        except ApiError as exc:
            logger.warning("history.session.failed session=%s code=%s error=%s", session_id, exc.code, exc)
            return None
        if not rows:
            return None
        session = rows[0]
        messages: list[ChatMessage] = []
        for event in session.get("session_events") or []:
            memory = _first_memory(event.get("memories"))
            if memory is None:
                continue
            messages.append(
                ChatMessage(
                    id=str(event.get("id")),
                    role="user" if event.get("author") == "user" else "assistant",
                    content=str(memory.get("content") or ""),
                    timestamp=event.get("timestamp"),
                    session_id=str(session.get("id")),
                )
            )
        return messages

    def delete_session(self, session_id: str) -> bool:
        """Soft-delete a session and its events by stamping ``deleted_at``."""

        stamp = {"deleted_at": datetime.now(timezone.utc).isoformat()}
        headers = self._headers(prefer="return=minimal")
        ok = True
        for table, column in (("sessions", "id"), ("session_events", "session_id")):
            try:
                self._api.patch(
                    f"/{table}",
                    stamp,
                    params={column: f"eq.{session_id}", "deleted_at": "is.null"},
                    headers=headers,
                )
            except ApiError as exc:
                logger.error(
                    "history.delete.failed table=%s session=%s code=%s error=%s",
                    table,
                    session_id,
                    exc.code,
                    exc,
                )
                ok = False
        if ok:
            logger.info("history.delete.completed session=%s", session_id)
        return ok

    def _load_sessions_with_events(self) -> list[ChatSession]:
        params = {
            "select": f"{_SESSION_COLUMNS},{_EVENTS_EMBED}",
            "order": "created_at.desc",
            "deleted_at": "is.null",
            "session_events.memories": "not.is.null",
        }
        rows = self._api.get("/sessions", params=params, headers=self._headers()) or []
        return [_session_from_row(row) for row in rows]

    def _load_sessions_only(self) -> list[ChatSession]:
        params = {
            "select": "id,user_id,created_at,updated_at",
            "order": "created_at.desc",
            "deleted_at": "is.null",
        }
        rows = self._api.get("/sessions", params=params, headers=self._headers()) or []
        return [
            ChatSession(
                id=str(row.get("id")),
                user_id=str(row.get("user_id") or ""),
                title=UNTITLED,
                message_count=0,
                started_at=row.get("created_at") or "",
                ended_at=row.get("updated_at"),
            )
            for row in rows
        ]

    def _headers(self, *, prefer: str | None = None) -> dict[str, str]:
        token: str | None = None
        if self._token_provider is not None:
            try:
                token = self._token_provider()
            except Exception as exc:
                logger.warning("history.auth.token_failed error=%s", exc)
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {token or self._anon_key}",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers


def _session_from_row(row: dict[str, Any]) -> ChatSession:
    events = row.get("session_events") or []
    return ChatSession(
        id=str(row.get("id")),
        user_id=str(row.get("user_id") or ""),
        title=_title_from_events(events),
        message_count=sum(1 for event in events if _first_memory(event.get("memories")) is not None),
        started_at=row.get("created_at") or "",
        ended_at=row.get("updated_at"),
    )


def _title_from_events(events: list[dict[str, Any]]) -> str:
    if not events:
        return UNTITLED
    raw = events[0].get("event_data")
    if not raw:
        return UNTITLED
    try:
        data = json.loads(raw) if isinstance(raw, str) else raw
        text = data["content"]["parts"][0]["text"]
    except (json.JSONDecodeError, KeyError, IndexError, TypeError):
        logger.debug("history.title.unreadable event=%s", events[0].get("id"))
        return UNTITLED
    first_line = str(text).split("\n", 1)[0].strip()
    return first_line or UNTITLED


def _first_memory(value: Any) -> dict[str, Any] | None:
    if isinstance(value, dict):
        return value
    if isinstance(value, list) and value and isinstance(value[0], dict):
        return value[0]
    return None


__all__ = ["ChatHistoryService", "ChatSession"]
