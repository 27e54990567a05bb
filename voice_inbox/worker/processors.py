"""Job processors, one per job type. Each turns a claimed job into a JobResult."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from sqlalchemy.orm import Session

from voice_inbox.models.job import Job
from voice_inbox.services.extraction import ExtractionOrchestrator
from voice_inbox.services.jobs import get_job_payload
from voice_inbox.services.llm.client import LlmBackend
from voice_inbox.services.notifications import Notifier, PushDispatcher, QueueNotifier
from voice_inbox.services.search import SearchBackend, SqlSearchBackend

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


@dataclass
class JobResult:
    success: bool
    error: str | None = None
    retryable: bool = False
    data: dict[str, Any] = field(default_factory=dict)


class Processor(Protocol):
    def process(self, job: Job) -> JobResult: ...


class ExtractProcessor:
    def __init__(
        self,
        session_factory: SessionFactory,
        llm: LlmBackend,
        search_factory: Callable[[Session], SearchBackend] = SqlSearchBackend,
        notifier_factory: Callable[[Session], Notifier] = QueueNotifier,
    ) -> None:
        self.session_factory = session_factory
        self.llm = llm
        self.search_factory = search_factory
        self.notifier_factory = notifier_factory

    def forced_epic_id(self, payload: dict[str, Any]) -> str | None:
        return None

    def process(self, job: Job) -> JobResult:
        payload = get_job_payload(job)
        db = self.session_factory()
        try:
            orchestrator = ExtractionOrchestrator(
                db,
                self.llm,
                self.search_factory(db),
                self.notifier_factory(db),
            )
            res = orchestrator.run(
                job.event_id,
                payload.get("transcript"),
                forced_epic_id=self.forced_epic_id(payload),
                job_type=job.type,
            )
        finally:
            db.close()

        data = dict(res.data)
        data["status"] = res.status
        return JobResult(success=res.success, error=res.error, retryable=res.retryable, data=data)


class ReprocessProcessor(ExtractProcessor):
    """Re-runs extraction, optionally pinned to the epic a reviewer picked."""

    def forced_epic_id(self, payload: dict[str, Any]) -> str | None:
        return payload.get("epic_id") or None


class PushProcessor:
    def __init__(self, dispatcher: PushDispatcher) -> None:
        self.dispatcher = dispatcher

    def process(self, job: Job) -> JobResult:
        payload = get_job_payload(job)
        if not payload.get("notification_type"):
            return JobResult(False, error="Missing notification_type in push payload", retryable=False)
        self.dispatcher.send(payload)
        return JobResult(True, data={"notification_type": payload["notification_type"]})
