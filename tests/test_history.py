from __future__ import annotations

import json
import logging
from dataclasses import replace

import httpx
import pytest

from kbchat.history import UNTITLED, ChatHistoryService


def _event(event_id: str, author: str, text: str, *, memory: bool = True, raw_data=None) -> dict:
    event_data = raw_data if raw_data is not None else json.dumps({"content": {"parts": [{"text": text}]}})
    return {
        "id": event_id,
        "session_id": "S1",
        "event_data": event_data,
        "timestamp": f"2024-05-01T10:00:0{event_id[-1]}Z",
        "author": author,
        "memories": {"id": event_id, "content": text} if memory else None,
    }


SESSION_ROW = {
    "id": "S1",
    "user_id": "user-1",
    "created_at": "2024-05-01T10:00:00Z",
    "updated_at": "2024-05-01T10:05:00Z",
    "session_events": [
        _event("e1", "user", "How do I reset my password?\nI tried everything"),
        _event("e2", "knowledge_agent", "Open settings and choose reset."),
    ],
}


def _service(settings, mock_client, handler, **kwargs) -> ChatHistoryService:
    return ChatHistoryService(settings, client=mock_client(handler), **kwargs)


def test_load_history_reads_sessions_with_events(settings, mock_client) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[SESSION_ROW])

    sessions = _service(settings, mock_client, handler).load_history()

    assert len(sessions) == 1
    session = sessions[0]
    assert session.id == "S1"
    assert session.title == "How do I reset my password?"
    assert session.message_count == 2
    assert session.started_at == "2024-05-01T10:00:00Z"
    assert session.ended_at == "2024-05-01T10:05:00Z"

    request = seen[0]
    assert request.url.path == "/rest/v1/sessions"
    assert request.url.params["order"] == "created_at.desc"
    assert request.url.params["deleted_at"] == "is.null"
    assert "session_events!inner" in request.url.params["select"]
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["authorization"] == "Bearer anon-key"


def test_load_history_falls_back_to_plain_sessions(settings, mock_client) -> None:
    selects: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        selects.append(request.url.params["select"])
        if "session_events" in request.url.params["select"]:
            return httpx.Response(400, json={"message": "could not find relationship"})
        return httpx.Response(
            200,
            json=[{"id": "S2", "user_id": "user-1", "created_at": "2024-05-02T00:00:00Z"}],
        )

    sessions = _service(settings, mock_client, handler).load_history()

    assert len(selects) == 2
    assert [session.id for session in sessions] == ["S2"]
    assert sessions[0].title == UNTITLED
    assert sessions[0].message_count == 0


def test_load_history_returns_empty_list_when_every_query_fails(settings, mock_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    assert _service(settings, mock_client, handler).load_history() == []


@pytest.mark.parametrize(
    "raw_data",
    [
        "{broken",
        json.dumps({"content": {"parts": []}}),
        json.dumps({"content": {"parts": [{"text": "   "}]}}),
    ],
)
def test_unreadable_first_event_gives_untitled_session(settings, mock_client, raw_data: str) -> None:
    row = {**SESSION_ROW, "session_events": [_event("e1", "user", "x", raw_data=raw_data)]}

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[row])

    sessions = _service(settings, mock_client, handler).load_history()

    assert sessions[0].title == UNTITLED


def test_get_session_messages_maps_authors_to_roles(settings, mock_client) -> None:
    row = {
        **SESSION_ROW,
        "session_events": SESSION_ROW["session_events"] + [_event("e3", "tool", "ignored", memory=False)],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["id"] == "eq.S1"
        assert request.url.params["session_events.order"] == "timestamp.asc"
        return httpx.Response(200, json=[row])

    messages = _service(settings, mock_client, handler).get_session_messages("S1")

    assert messages is not None
    assert [(message.role, message.content) for message in messages] == [
        ("user", "How do I reset my password?\nI tried everything"),
        ("assistant", "Open settings and choose reset."),
    ]
    assert all(message.session_id == "S1" for message in messages)


def test_get_session_messages_returns_none_when_missing_or_failing(settings, mock_client) -> None:
    empty = _service(settings, mock_client, lambda request: httpx.Response(200, json=[]))
    failing = _service(settings, mock_client, lambda request: httpx.Response(500))

    assert empty.get_session_messages("nope") is None
    assert failing.get_session_messages("S1") is None


def test_delete_session_soft_deletes_session_and_events(settings, mock_client) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    service = _service(settings, mock_client, handler, token_provider=lambda: "user-jwt")

    assert service.delete_session("S1") is True

    assert [request.method for request in seen] == ["PATCH", "PATCH"]
    assert seen[0].url.path == "/rest/v1/sessions"
    assert seen[0].url.params["id"] == "eq.S1"
    assert seen[1].url.path == "/rest/v1/session_events"
    assert seen[1].url.params["session_id"] == "eq.S1"
    for request in seen:
        assert request.url.params["deleted_at"] == "is.null"
        assert request.headers["prefer"] == "return=minimal"
        assert request.headers["authorization"] == "Bearer user-jwt"
        assert "deleted_at" in json.loads(request.content)


def test_delete_session_reports_partial_failure(settings, mock_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("session_events"):
            return httpx.Response(403)
        return httpx.Response(204)

    assert _service(settings, mock_client, handler).delete_session("S1") is False


def test_requires_database_url(settings) -> None:
    with pytest.raises(ValueError):
        ChatHistoryService(replace(settings, supabase_url=None))


def test_failing_token_provider_falls_back_to_anon_key(settings, mock_client, caplog) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.method == "PATCH":
            return httpx.Response(204)
        return httpx.Response(200, json=[SESSION_ROW])

    def provider() -> str:
        raise RuntimeError("auth store offline")

    service = _service(settings, mock_client, handler, token_provider=provider)

    with caplog.at_level(logging.WARNING, logger="kbchat.history"):
        sessions = service.load_history()
        messages = service.get_session_messages("S1")
        deleted = service.delete_session("S1")

    assert [session.id for session in sessions] == ["S1"]
    assert messages is not None and len(messages) == 2
    assert deleted is True
    assert all(request.headers["authorization"] == "Bearer anon-key" for request in seen)
    assert any("history.auth.token_failed" in record.getMessage() for record in caplog.records)
