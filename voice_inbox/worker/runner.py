from __future__ import annotations

import logging
import threading

from voice_inbox.core.config import settings
from voice_inbox.models.job import Job
from voice_inbox.services import jobs
from voice_inbox.services.events import get_event, set_event_status
from voice_inbox.worker.processors import (
    ExtractProcessor,
    JobResult,
    Processor,
    PushProcessor,
    ReprocessProcessor,
    SessionFactory,
)

logger = logging.getLogger(__name__)

# job types whose terminal failure also fails the event they were working on
EVENT_JOB_TYPES = ("extract", "reprocess")
OPEN_EVENT_STATUSES = ("queued", "transcribed", "processing")


class WorkerRunner:
    """
    Claims jobs from the store and hands them to the processor registered for
    their type. Safe to run in several processes at once; the store's claim
    decides who gets which job.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        processors: dict[str, Processor] | None = None,
        max_per_poll: int | None = None,
        poll_interval_s: float | None = None,
        lease_seconds: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.processors: dict[str, Processor] = dict(processors or {})
        self.max_per_poll = max_per_poll or settings.worker_max_per_poll
        self.poll_interval_s = settings.worker_poll_interval_s if poll_interval_s is None else poll_interval_s
        self.lease_seconds = settings.job_lease_seconds if lease_seconds is None else lease_seconds

    def register(self, job_type: str, processor: Processor) -> None:
        self.processors[job_type] = processor

    def run_once(self) -> int:
        """Process up to `max_per_poll` due jobs. Returns how many were handled."""
        db = self.session_factory()
        processed = 0
        try:
            if self.lease_seconds > 0:
                reclaimed = jobs.reclaim_stale_jobs(db, self.lease_seconds)
                if reclaimed:
                    logger.warning("Reclaimed %s stale running job(s)", reclaimed)

            while processed < self.max_per_poll:
                job = jobs.claim(db)
                if job is None:
                    break
                self._process(db, job)
                processed += 1
        finally:
            db.close()
        return processed

    def _process(self, db, job: Job) -> None:
        processor = self.processors.get(job.type)
        if processor is None:
            jobs.fail(db, job.id, f"No worker registered for job type: {job.type}", retryable=False)
            return

        logger.info("Processing %s job %s (attempt %s)", job.type, job.id, job.attempts)
        try:
            result = processor.process(job)
        except Exception as e:
            logger.exception("Processor for %s job %s raised", job.type, job.id)
            result = JobResult(False, error=str(e) or e.__class__.__name__, retryable=True)

        try:
            if result.success:
                jobs.complete(db, job.id, attempt=job.attempts)
                return
            failed = jobs.fail(
                db, job.id, result.error or "Unknown error", retryable=result.retryable, attempt=job.attempts
            )
        except jobs.JobStateError as e:
            # the lease sweep handed the job back while it was running
            logger.warning("Dropping outcome of job %s: %s", e.job_id, e)
            return

        if failed.status == "failed" and job.type in EVENT_JOB_TYPES:
            self._fail_event(db, job, failed.error_message)

    def _fail_event(self, db, job: Job, error: str | None) -> None:
        ev = get_event(db, job.event_id)
        if ev is None or ev.status not in OPEN_EVENT_STATUSES:
            db.rollback()
            return
        set_event_status(db, job.event_id, "failed", f"{job.type} job failed: {error}")

    def run_forever(self, stop_event: threading.Event | None = None) -> None:
        stop_event = stop_event or threading.Event()
        logger.info(
            "Worker started (types=%s, poll=%ss, max_per_poll=%s)",
            sorted(self.processors),
            self.poll_interval_s,
            self.max_per_poll,
        )
        while not stop_event.is_set():
            try:
                processed = self.run_once()
            except Exception:
                logger.exception("Worker poll failed")
                processed = 0
            if processed == 0:
                stop_event.wait(self.poll_interval_s)
        logger.info("Worker stopped")


def build_runner() -> WorkerRunner:
    from voice_inbox.db.session import SessionLocal
    from voice_inbox.services.llm.client import build_llm_client
    from voice_inbox.services.notifications import LoggingPushDispatcher

    llm = build_llm_client()
    llm.start()
    return WorkerRunner(
        SessionLocal,
        {
            "extract": ExtractProcessor(SessionLocal, llm),
            "reprocess": ReprocessProcessor(SessionLocal, llm),
            "push": PushProcessor(LoggingPushDispatcher()),
        },
    )
