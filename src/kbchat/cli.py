"""Command-line access to the knowledge-base chat, history and ingestion services."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import TextIO

from .adk_chat import AdkChatService, ChatInput
from .config import Settings
from .errors import ApiError
from .history import ChatHistoryService
from .ingestion import DocumentIngestionClient, JobStatus


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kbchat", description="Chat with your knowledge bases")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    chat = sub.add_parser("chat", help="Ask a question and stream the answer")
    chat.add_argument("question", help="Question to send")
    chat.add_argument("--user", dest="user_id", required=True, help="User identifier")
    chat.add_argument(
        "--kb",
        dest="knowledge_ids",
        action="append",
        default=[],
        help="Knowledge base ID to search (repeatable)",
    )
    chat.add_argument("--session", dest="session_id", help="Continue an existing session")
    chat.add_argument("--offline", action="store_true", help="Disable online search for this turn")

    sub.add_parser("health", help="Check that the chat and ingestion services respond")

    history = sub.add_parser("history", help="List, show or delete past sessions")
    group = history.add_mutually_exclusive_group()
    group.add_argument("--show", metavar="SESSION", help="Print the messages of one session")
    group.add_argument("--delete", metavar="SESSION", help="Soft-delete one session")

    ingest = sub.add_parser("ingest", help="Drive the document ingestion service")
    ingest_sub = ingest.add_subparsers(dest="ingest_command", required=True)
    sync = ingest_sub.add_parser("sync", help="Queue documents for ingestion")
    sync.add_argument("document_ids", nargs="*", help="Documents to sync")
    sync.add_argument("--all", dest="sync_all", action="store_true", help="Sync every document")
    status = ingest_sub.add_parser("status", help="Show document processing status")
    status.add_argument("document_ids", nargs="+")
    ingest_sub.add_parser("pending", help="List documents waiting to be processed")
    ingest_sub.add_parser("failed", help="List failed jobs")
    retry = ingest_sub.add_parser("retry", help="Retry a failed job")
    retry.add_argument("job_id")
    process = ingest_sub.add_parser("process", help="Process a single document now")
    process.add_argument("document_id")
    monitor = ingest_sub.add_parser("monitor", help="Follow a job until it finishes")
    monitor.add_argument("job_id")
    monitor.add_argument("--interval", type=float, default=2.0, help="Seconds between polls")
    return parser


class _StreamPrinter:
    """Print cumulative stream updates as they grow."""

    def __init__(self, out: TextIO) -> None:
        self._out = out
        self._printed = ""

    def on_stream_data(self, text: str) -> None:
        if text.startswith(self._printed):
            self._out.write(text[len(self._printed):])
        else:
            self._out.write("\n" + text)
        self._out.flush()
        self._printed = text

    def on_complete(self, text: str) -> None:
        if text != self._printed:
            self.on_stream_data(text)
        self._out.write("\n")

    def on_error(self, error: str) -> None:
        if self._printed:
            self._out.write("\n")
        self._out.write(f"error: {error}\n")


def _run_chat(args: argparse.Namespace, settings: Settings, out: TextIO) -> int:
    service = AdkChatService(settings, metrics=settings.build_metrics_recorder())
    printer = _StreamPrinter(out)
    result = service.send_message_with_streaming(
        ChatInput(
            question=args.question,
            user_id=args.user_id,
            session_id=args.session_id,
            knowledge_ids=args.knowledge_ids,
            online_mode=not args.offline,
        ),
        printer.on_stream_data,
        printer.on_complete,
        printer.on_error,
    )
    if result.session_id:
        out.write(f"session: {result.session_id}\n")
    return 0 if result.success else 1


def _run_health(settings: Settings, out: TextIO) -> int:
    chat_ok = AdkChatService(settings).check_health()
    with DocumentIngestionClient(settings) as ingestion:
        ingestion_ok = ingestion.check_health()
    out.write(f"chat: {'ok' if chat_ok else 'unavailable'}\n")
    out.write(f"ingestion: {'ok' if ingestion_ok else 'unavailable'}\n")
    return 0 if chat_ok and ingestion_ok else 1


def _run_history(args: argparse.Namespace, service: ChatHistoryService, out: TextIO) -> int:
    try:
        if args.delete:
            deleted = service.delete_session(args.delete)
            out.write(("Deleted" if deleted else "Could not delete") + f" session {args.delete}\n")
            return 0 if deleted else 1
        if args.show:
            messages = service.get_session_messages(args.show)
            if messages is None:
                out.write(f"Session {args.show} not found\n")
                return 1
            for message in messages:
                out.write(f"[{message.role}] {message.content}\n")
            return 0
        for session in service.load_history():
            out.write(f"{session.id}  {session.started_at}  ({session.message_count})  {session.title}\n")
        return 0
    finally:
        service.close()


def _print_job(status: JobStatus, out: TextIO) -> None:
    out.write(f"job {status.job_id}: {status.status} {status.progress}%\n")


def _run_ingest(args: argparse.Namespace, settings: Settings, out: TextIO) -> int:
    with DocumentIngestionClient(settings, metrics=settings.build_metrics_recorder()) as client:
        command = args.ingest_command
        if command == "sync":
            if args.sync_all:
                response = client.sync_all_documents()
            elif args.document_ids:
                response = client.batch_sync_documents(args.document_ids)
            else:
                out.write("Nothing to sync: pass document IDs or --all\n")
                return 2
            out.write(f"success={response.success} job={response.job_id or '-'}\n")
            if response.message:
                out.write(f"{response.message}\n")
            return 0 if response.success else 1
        if command == "status":
            for status in client.get_multiple_document_statuses(args.document_ids):
                out.write(f"{status.document_id}: {status.status or 'unknown'} {status.progress}%\n")
            return 0
        if command == "pending":
            pending = client.get_pending_documents()
            for document in pending.documents:
                out.write(f"{document.document_id}  {document.name}  queued {document.queued_at}\n")
            out.write(f"total: {pending.total}\n")
            return 0
        if command == "failed":
            failed = client.get_failed_jobs()
            for job in failed.jobs:
                out.write(f"{job.job_id}  {job.error_message}  ({job.retry_count}/{job.max_retries})\n")
            out.write(f"total: {failed.total}\n")
            return 0
        if command == "retry":
            client.retry_job(args.job_id)
            out.write(f"Retry queued for job {args.job_id}\n")
            return 0
        if command == "process":
            client.process_document(args.document_id)
            out.write(f"Processing started for document {args.document_id}\n")
            return 0
        final = client.monitor_job(
            args.job_id,
            on_progress=lambda status: _print_job(status, out),
            poll_interval=args.interval,
        )
        return 0 if final.status == "completed" else 1


def main(argv: list[str] | None = None, *, out: TextIO | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    out = out or sys.stdout
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        settings = Settings.from_env()
        history = ChatHistoryService(settings) if args.command == "history" else None
    except ValueError as exc:
        parser.error(str(exc))
        return 2
    try:
        if args.command == "chat":
            return _run_chat(args, settings, out)
        if args.command == "health":
            return _run_health(settings, out)
        if history is not None:
            return _run_history(args, history, out)
        return _run_ingest(args, settings, out)
    except ApiError as exc:
        out.write(f"error [{exc.code}]: {exc.message}\n")
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
