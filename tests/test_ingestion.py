from __future__ import annotations

import json
import logging

import httpx
import pytest

from kbchat.errors import ApiError
from kbchat.ingestion import DocumentIngestionClient, JobStatus
from kbchat.observability import MetricsRecorder


def _client(settings, mock_client, handler, **kwargs) -> DocumentIngestionClient:
    return DocumentIngestionClient(settings, client=mock_client(handler), **kwargs)


def test_batch_sync_posts_document_ids(settings, mock_client) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "success": True,
                "message": "Queued 2 documents",
                "processedDocumentIds": ["d1", "d2"],
                "jobId": "job-1",
            },
        )

    client = _client(settings, mock_client, handler)

    response = client.batch_sync_documents(["d1", "d2"])

    assert str(seen[0].url) == "http://ingest.test/api/Documents/sync"
    assert json.loads(seen[0].content) == {"syncAll": False, "documentIds": ["d1", "d2"]}
    assert response.success is True
    assert response.job_id == "job-1"
    assert response.processed_document_ids == ["d1", "d2"]


def test_sync_all_omits_document_ids(settings, mock_client, caplog) -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True})

    metrics = MetricsRecorder(enabled=True, namespace="kbchat.test")
    client = _client(settings, mock_client, handler, metrics=metrics)

    with caplog.at_level(logging.INFO, logger="kbchat.metrics"):
        response = client.sync_all_documents()

    assert bodies == [{"syncAll": True}]
    assert response.processed_document_ids == []
    assert any("kbchat.test.ingestion.sync_requests" in record.getMessage() for record in caplog.records)


def test_server_errors_are_retried(settings, mock_client) -> None:
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        if attempts["count"] < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={"documentId": "d1", "progress": 40, "lastUpdated": "now"})

    client = _client(settings, mock_client, handler)

    status = client.get_document_status("d1")

    assert attempts["count"] == 3
    assert status.progress == 40


def test_retries_give_up_with_last_error(settings, mock_client) -> None:
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        return httpx.Response(500)

    client = _client(settings, mock_client, handler)

    with pytest.raises(ApiError) as excinfo:
        client.get_job_status("job-1")

    assert attempts["count"] == 3
    assert excinfo.value.code == "500"
    assert excinfo.value.status_code == 500


def test_not_found_is_not_retried(settings, mock_client) -> None:
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        return httpx.Response(404)

    client = _client(settings, mock_client, handler)

    with pytest.raises(ApiError) as excinfo:
        client.get_document_status("missing")

    assert attempts["count"] == 1
    assert excinfo.value.code == "404"


def test_transport_failures_map_to_error_codes(settings, mock_client) -> None:
    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    def slow(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(ApiError) as network:
        _client(settings, mock_client, refused).retry_job("job-1")
    with pytest.raises(ApiError) as timeout:
        _client(settings, mock_client, slow).process_document("d1")

    assert network.value.is_network_error is True
    assert "http://ingest.test/api" in network.value.message
    assert timeout.value.is_timeout_error is True


def test_unreadable_json_is_reported_as_unknown_error(settings, mock_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-type": "application/json"}, content=b"<html>")

    with pytest.raises(ApiError) as excinfo:
        _client(settings, mock_client, handler).get_job_status("job-1")

    assert excinfo.value.code == "UNKNOWN_ERROR"
    assert excinfo.value.status_code == 200


def test_multiple_statuses_skip_failed_lookups(settings, mock_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if "/d2/" in request.url.path:
            return httpx.Response(404)
        document_id = request.url.path.split("/")[-2]
        return httpx.Response(200, json={"documentId": document_id, "progress": 100, "status": "done"})

    client = _client(settings, mock_client, handler)

    statuses = client.get_multiple_document_statuses(["d1", "d2", "d3"])

    assert [status.document_id for status in statuses] == ["d1", "d3"]


def test_unexpected_status_bodies_do_not_abort_batch(settings, mock_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if "/d2/" in request.url.path:
            return httpx.Response(200, text="processing")
        if "/d3/" in request.url.path:
            return httpx.Response(200, json={"documentId": "d3", "progress": "50%"})
        return httpx.Response(200, json={"documentId": "d1", "progress": 100})

    client = _client(settings, mock_client, handler)

    statuses = client.get_multiple_document_statuses(["d1", "d2", "d3"])

    assert [status.document_id for status in statuses] == ["d1"]
    with pytest.raises(ApiError) as excinfo:
        client.get_document_status("d2")
    assert excinfo.value.code == "UNKNOWN_ERROR"


def test_job_status_text_body_is_unknown_error(settings, mock_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="queued")

    with pytest.raises(ApiError) as excinfo:
        _client(settings, mock_client, handler).get_job_status("job-1")

    assert excinfo.value.code == "UNKNOWN_ERROR"


def test_pending_documents_accept_bare_list(settings, mock_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=[
                {"id": "d1", "name": "guide.pdf", "queuedAt": "2024-01-01T00:00:00Z"},
                {"documentId": "d2"},
            ],
        )

    pending = _client(settings, mock_client, handler).get_pending_documents()

    assert pending.total == 2
    assert [document.document_id for document in pending.documents] == ["d1", "d2"]
    assert pending.documents[1].name == "Unknown"
    assert pending.documents[1].priority == 1
    assert pending.documents[1].queued_at


def test_pending_documents_accept_wrapped_object(settings, mock_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"documents": [{"documentId": "d1", "name": "a"}], "total": 7})

    pending = _client(settings, mock_client, handler).get_pending_documents()

    assert pending.total == 7
    assert pending.documents[0].name == "a"


def test_failed_jobs_apply_defaults(settings, mock_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/Jobs/failed"
        return httpx.Response(200, json=[{"jobId": "j1", "retryCount": 2}, {}])

    failed = _client(settings, mock_client, handler).get_failed_jobs()

    assert failed.total == 2
    assert failed.jobs[0].retry_count == 2
    assert failed.jobs[0].max_retries == 3
    assert failed.jobs[1].job_id == "unknown"
    assert failed.jobs[1].error_message == "Unknown error"


def test_monitor_job_polls_until_finished(settings, mock_client) -> None:
    statuses = iter(
        [
            {"jobId": "j1", "status": "queued", "progress": 0},
            {"jobId": "j1", "status": "processing", "progress": 50},
            {"jobId": "j1", "status": "completed", "progress": 100},
        ]
    )
    sleeps: list[float] = []
    seen: list[JobStatus] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=next(statuses))

    client = _client(settings, mock_client, handler, sleep=sleeps.append)

    final = client.monitor_job("j1", seen.append, poll_interval=0.5)

    assert final.status == "completed"
    assert final.finished is True
    assert [status.progress for status in seen] == [0, 50, 100]
    assert sleeps == [0.5, 0.5]


def test_monitor_job_stops_after_max_polls(settings, mock_client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"jobId": "j1", "status": "processing", "progress": 10})

    client = _client(settings, mock_client, handler, sleep=lambda _: None)

    final = client.monitor_job("j1", max_polls=3)

    assert final.status == "processing"
    assert final.finished is False


def test_check_health(settings, mock_client) -> None:
    def ok(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[])

    attempts = {"count": 0}

    def down(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        return httpx.Response(503)

    assert _client(settings, mock_client, ok).check_health() is True
    assert _client(settings, mock_client, down).check_health() is False
    assert attempts["count"] == 1
