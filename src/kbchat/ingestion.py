"""Client for the document ingestion service (sync, processing and job tracking)."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, TypeVar

import httpx

from .config import Settings
from .errors import ApiError
from .http import ApiClient
from .observability import MetricsRecorder

logger = logging.getLogger(__name__)

T = TypeVar("T")

TERMINAL_JOB_STATUSES = frozenset({"completed", "failed"})


@dataclass(slots=True)
class DocumentSyncRequest:
    sync_all: bool
    document_ids: list[str] | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"syncAll": self.sync_all}
        if self.document_ids is not None:
            payload["documentIds"] = list(self.document_ids)
        return payload


@dataclass(slots=True)
class DocumentSyncResponse:
    success: bool
    message: str | None = None
    processed_document_ids: list[str] = field(default_factory=list)
    job_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DocumentSyncResponse":
        return cls(
            success=bool(data.get("success", False)),
            message=data.get("message"),
            processed_document_ids=[str(item) for item in data.get("processedDocumentIds") or []],
            job_id=data.get("jobId"),
        )


@dataclass(slots=True)
class DocumentStatus:
    document_id: str
    progress: int
    last_updated: str
    status: str | None = None
    error_message: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DocumentStatus":
        return cls(
            document_id=str(data.get("documentId", "")),
            progress=int(data.get("progress") or 0),
            last_updated=str(data.get("lastUpdated") or ""),
            status=data.get("status"),
            error_message=data.get("errorMessage"),
        )


@dataclass(slots=True)
class JobStatus:
    job_id: str
    status: str
    progress: int = 0
    start_time: str | None = None
    end_time: str | None = None
    error_message: str | None = None
    processed_count: int | None = None
    total_count: int | None = None

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobStatus":
        return cls(
            job_id=str(data.get("jobId", "")),
            status=str(data.get("status") or "unknown"),
            progress=int(data.get("progress") or 0),
            start_time=data.get("startTime"),
            end_time=data.get("endTime"),
            error_message=data.get("errorMessage"),
            processed_count=data.get("processedCount"),
            total_count=data.get("totalCount"),
        )


@dataclass(slots=True)
class PendingDocument:
    document_id: str
    name: str
    queued_at: str
    priority: int = 1
    estimated_processing_time: float | None = None


@dataclass(slots=True)
class PendingDocuments:
    documents: list[PendingDocument]
    total: int


@dataclass(slots=True)
class FailedJob:
    job_id: str
    error_message: str
    failed_at: str
    retry_count: int = 0
    max_retries: int = 3
    document_id: str | None = None


@dataclass(slots=True)
class FailedJobs:
    jobs: list[FailedJob]
    total: int


class DocumentIngestionClient:
    """Talk to the ingestion service that chunks and indexes uploaded documents."""

    def __init__(
        self,
        settings: Settings,
        *,
        client: httpx.Client | None = None,
        metrics: MetricsRecorder | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._api = ApiClient(
            settings.ingestion_base_url,
            service_name="ingestion",
            timeout=settings.ingestion_timeout,
            retry_attempts=settings.ingestion_retry_attempts,
            retry_delay=settings.ingestion_retry_delay,
            client=client,
        )
        self._metrics = metrics
        self._sleep = sleep

    def close(self) -> None:
        self._api.close()

    def __enter__(self) -> "DocumentIngestionClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def check_health(self) -> bool:
        try:
            response = self._api.request("GET", "/Documents/pending", retry=False)
        except ApiError as exc:
            logger.warning("ingestion.health.failed code=%s error=%s", exc.code, exc)
            return False
        return response.status_code == 200

    def sync_documents(self, request: DocumentSyncRequest) -> DocumentSyncResponse:
        logger.info(
            "ingestion.sync.start sync_all=%s documents=%s",
            request.sync_all,
            len(request.document_ids or []),
        )
        data = self._api.post("/Documents/sync", request.to_payload())
        result = _parse_response(
            "/Documents/sync",
            lambda body: DocumentSyncResponse.from_dict(body or {}),
            data,
        )
        logger.info(
            "ingestion.sync.completed success=%s job=%s processed=%s",
            result.success,
            result.job_id,
            len(result.processed_document_ids),
        )
        if self._metrics:
            self._metrics.increment(
                "ingestion.sync_requests",
                sync_all=request.sync_all,
                success=result.success,
            )
        return result

    def batch_sync_documents(self, document_ids: Iterable[str]) -> DocumentSyncResponse:
        return self.sync_documents(DocumentSyncRequest(sync_all=False, document_ids=list(document_ids)))

    def sync_all_documents(self) -> DocumentSyncResponse:
        return self.sync_documents(DocumentSyncRequest(sync_all=True))

    def get_document_status(self, document_id: str) -> DocumentStatus:
        path = f"/Documents/{document_id}/status"
        return _parse_response(
            path,
            lambda body: DocumentStatus.from_dict(body or {"documentId": document_id}),
            self._api.get(path),
        )

    def get_multiple_document_statuses(self, document_ids: Iterable[str]) -> list[DocumentStatus]:
        """Fetch statuses one by one, dropping documents whose lookup failed."""

        statuses: list[DocumentStatus] = []
        for document_id in document_ids:
            try:
                statuses.append(self.get_document_status(document_id))
            except ApiError as exc:
                logger.warning(
                    "ingestion.status.skipped document=%s code=%s error=%s",
                    document_id,
                    exc.code,
                    exc,
                )
        return statuses

    def process_document(self, document_id: str) -> None:
        logger.info("ingestion.process document=%s", document_id)
        self._api.post(f"/Documents/{document_id}/process")

    def get_pending_documents(self) -> PendingDocuments:
        path = "/Documents/pending"
        return _parse_response(path, _pending_documents_from, self._api.get(path))

    def get_job_status(self, job_id: str) -> JobStatus:
        path = f"/Jobs/{job_id}/status"
        return _parse_response(
            path,
            lambda body: JobStatus.from_dict(body or {"jobId": job_id}),
            self._api.get(path),
        )

    def get_failed_jobs(self) -> FailedJobs:
        path = "/Jobs/failed"
        return _parse_response(path, _failed_jobs_from, self._api.get(path))

    def retry_job(self, job_id: str) -> None:
        logger.info("ingestion.job.retry job=%s", job_id)
        self._api.post(f"/Jobs/{job_id}/retry")

    def monitor_job(
        self,
        job_id: str,
        on_progress: Callable[[JobStatus], None] | None = None,
        *,
        poll_interval: float = 2.0,
        max_polls: int | None = None,
    ) -> JobStatus:
        """Poll a job until it completes or fails.

        Lookup errors propagate immediately. ``max_polls`` bounds the number
        of status requests; the last status seen is returned when it runs
        out.
        """

        polls = 0
        start = time.perf_counter()
        while True:
            status = self.get_job_status(job_id)
            polls += 1
            logger.debug(
                "ingestion.job.poll job=%s status=%s progress=%s",
                job_id,
                status.status,
                status.progress,
            )
            if on_progress is not None:
                on_progress(status)
            if status.finished or (max_polls is not None and polls >= max_polls):
                break
            self._sleep(poll_interval)

        logger.info("ingestion.job.finished job=%s status=%s polls=%s", job_id, status.status, polls)
        if self._metrics:
            self._metrics.record_timing(
                "ingestion.job_monitor_duration",
                time.perf_counter() - start,
                status=status.status,
            )
        return status


def _parse_response(path: str, build: Callable[[Any], T], data: Any) -> T:
    """Build a result from a decoded body, reporting unexpected shapes as ``UNKNOWN_ERROR``."""

    try:
        return build(data)
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.error("ingestion.response.unexpected path=%s error=%s", path, exc)
        raise ApiError(f"Unexpected response from {path}: {exc}", code="UNKNOWN_ERROR") from exc


def _pending_documents_from(data: Any) -> PendingDocuments:
    if isinstance(data, list):
        documents = [_pending_from_item(item) for item in data if isinstance(item, dict)]
        return PendingDocuments(documents=documents, total=len(data))
    data = data or {}
    documents = [_pending_from_item(item) for item in data.get("documents") or []]
    return PendingDocuments(documents=documents, total=int(data.get("total", len(documents))))


def _failed_jobs_from(data: Any) -> FailedJobs:
    if isinstance(data, list):
        jobs = [_failed_job_from_item(item) for item in data if isinstance(item, dict)]
        return FailedJobs(jobs=jobs, total=len(data))
    data = data or {}
    jobs = [_failed_job_from_item(item) for item in data.get("jobs") or []]
    return FailedJobs(jobs=jobs, total=int(data.get("total", len(jobs))))


def _pending_from_item(item: dict[str, Any]) -> PendingDocument:
    return PendingDocument(
        document_id=str(item.get("documentId") or item.get("id") or ""),
        name=str(item.get("name") or "Unknown"),
        queued_at=str(item.get("queuedAt") or _utc_now()),
        priority=int(item.get("priority") or 1),
        estimated_processing_time=item.get("estimatedProcessingTime"),
    )


def _failed_job_from_item(item: dict[str, Any]) -> FailedJob:
    return FailedJob(
        job_id=str(item.get("jobId") or "unknown"),
        error_message=str(item.get("errorMessage") or "Unknown error"),
        failed_at=str(item.get("failedAt") or _utc_now()),
        retry_count=int(item.get("retryCount") or 0),
        max_retries=int(item.get("maxRetries") or 3),
        document_id=item.get("documentId"),
    )


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


__all__ = [
    "DocumentIngestionClient",
    "DocumentStatus",
    "DocumentSyncRequest",
    "DocumentSyncResponse",
    "FailedJob",
    "FailedJobs",
    "JobStatus",
    "PendingDocument",
    "PendingDocuments",
]
