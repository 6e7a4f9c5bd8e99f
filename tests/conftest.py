from __future__ import annotations

import json
from typing import Any, Callable, Iterable

import httpx
import pytest

from kbchat.config import Settings


def sse_event(
    message_id: str,
    text: str,
    *,
    partial: bool = True,
    session: str | None = "session-1",
) -> str:
    payload: dict[str, Any] = {
        "data": {
            "id": message_id,
            "partial": partial,
            "author": "knowledge_agent",
            "content": {"parts": [{"text": text}], "role": "model"},
        }
    }
    if session is not None:
        payload["session"] = session
    return json.dumps(payload)


def sse_body(payloads: Iterable[str]) -> bytes:
    return "".join(f"data: {payload}\n\n" for payload in payloads).encode("utf-8")


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        adk_base_url="http://adk.test",
        adk_timeout=5.0,
        adk_access_token="token-123",
        ingestion_base_url="http://ingest.test/api",
        ingestion_retry_attempts=2,
        ingestion_retry_delay=0.0,
        supabase_url="http://db.test",
        supabase_anon_key="anon-key",
    )


@pytest.fixture()
def mock_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.Client]:
    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(handler))

    return factory
