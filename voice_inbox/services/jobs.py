"""
Job store: a durable queue state machine over the `jobs` table.

    pending -> running -> completed | retry | failed
    retry   -> running (once run_at has passed)

Mutual exclusion between workers comes from the database alone: every
transition is a conditional UPDATE guarded on the expected status, and the
affected-row-count decides which caller won. `completed` and `failed` are
terminal; only a `running` job can be completed or failed.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from voice_inbox.db.base import utcnow
from voice_inbox.models.job import CLAIMABLE_STATUSES, JOB_STATUSES, JOB_TYPES, Job

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled due to reprocessing"


class JobNotFoundError(LookupError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class JobStateError(RuntimeError):
    """Raised when a job is not in a state that allows the requested transition."""

    def __init__(self, job_id: str, status: str, target: str) -> None:
        super().__init__(f"Job {job_id} is {status}; cannot move to {target}")
        self.job_id = job_id
        self.status = status


def enqueue(
    db: Session,
    event_id: str,
    job_type: str,
    payload: dict[str, Any] | None = None,
    *,
    max_attempts: int = 3,
    run_at: datetime | None = None,
) -> Job:
    if job_type not in JOB_TYPES:
        raise ValueError(f"Unknown job type: {job_type}")

    now = utcnow()
    job = Job(
        event_id=event_id,
        type=job_type,
        status="pending",
        payload_json=json.dumps(payload or {}, ensure_ascii=False),
        attempts=0,
        max_attempts=max_attempts,
        run_at=run_at or now,
        created_at=now,
        updated_at=now,
    )
    db.add(job)
    db.commit()
    logger.info("Enqueued %s job %s for event %s", job_type, job.id, event_id)
    return job


def claim(db: Session) -> Job | None:
    """
    Claim the next runnable job, or None when the queue is empty or another
    worker won the race. Losers simply poll again.
    """
    now = utcnow()
    try:
        job_id = db.execute(
            select(Job.id)
            .where(Job.status.in_(CLAIMABLE_STATUSES), Job.run_at <= now)
            .order_by(Job.run_at.asc(), Job.created_at.asc())
            .limit(1)
        ).scalar_one_or_none()

        if job_id is None:
            db.rollback()
            return None

        result = db.execute(
            update(Job)
            .where(Job.id == job_id, Job.status.in_(CLAIMABLE_STATUSES))
            .values(
                status="running",
                started_at=now,
                attempts=Job.attempts + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            return None

        # load before commit so no read transaction stays open afterwards
        job = db.get(Job, job_id, populate_existing=True)
        db.commit()
    except Exception:
        db.rollback()
        raise

    return job


def _get_or_raise(db: Session, job_id: str) -> Job:
    job = db.get(Job, job_id, populate_existing=True)
    if job is None:
        db.rollback()
        raise JobNotFoundError(job_id)
    return job


def _finish_attempt(db: Session, job: Job, values: dict[str, Any]) -> Job:
    """
    Apply `values` to a running job, guarded on the status and attempt count
    read by the caller. Raises JobStateError if the job moved in between.
    """
    job_id, attempts = job.id, job.attempts
    try:
        result = db.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == "running", Job.attempts == attempts)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            current = _get_or_raise(db, job_id).status
            db.rollback()
            raise JobStateError(job_id, current, values["status"])

        job = db.get(Job, job_id, populate_existing=True)
        db.commit()
    except JobStateError:
        raise
    except Exception:
        db.rollback()
        raise
    return job


def _running_or_raise(db: Session, job_id: str, target: str, attempt: int | None) -> Job:
    job = _get_or_raise(db, job_id)
    if job.status != "running" or (attempt is not None and job.attempts != attempt):
        current = job.status if job.status != "running" else f"running attempt {job.attempts}"
        db.rollback()
        raise JobStateError(job_id, current, target)
    return job


def complete(db: Session, job_id: str, attempt: int | None = None) -> Job:
    """
    Mark a running job completed. Pass `attempt` (the attempt count seen at
    claim time) to refuse when the job has since been handed to another worker.
    """
    job = _running_or_raise(db, job_id, "completed", attempt)
    now = utcnow()
    return _finish_attempt(
        db,
        job,
        {"status": "completed", "completed_at": now, "error_message": None, "updated_at": now},
    )


def fail(db: Session, job_id: str, error: str, retryable: bool = True, attempt: int | None = None) -> Job:
    """
    Record a failed attempt of a running job.

    Retryable failures with attempts left go to `retry` with run_at pushed
    out by 2^attempts minutes; everything else is terminal `failed`.
    `attempt` guards the same way as in `complete`.
    """
    job = _running_or_raise(db, job_id, "failed", attempt)
    now = utcnow()

    values: dict[str, Any] = {"error_message": error, "updated_at": now}
    if retryable and job.attempts < job.max_attempts:
        next_run = now + timedelta(minutes=2 ** job.attempts)
        values["status"] = "retry"
        # run_at never moves backwards
        values["run_at"] = max(job.run_at, next_run)
    else:
        values["status"] = "failed"
        values["completed_at"] = now

    job = _finish_attempt(db, job, values)
    logger.info(
        "Job %s -> %s (attempt %s/%s): %s",
        job.id,
        job.status,
        job.attempts,
        job.max_attempts,
        error,
    )
    return job


def get_job(db: Session, job_id: str) -> Job | None:
    return db.get(Job, job_id, populate_existing=True)


def get_jobs_by_event(db: Session, event_id: str) -> list[Job]:
    return list(
        db.execute(
            select(Job)
            .where(Job.event_id == event_id)
            .order_by(Job.created_at.asc())
            .execution_options(populate_existing=True)
        ).scalars()
    )


def get_queue_stats(db: Session) -> dict[str, int]:
    rows = db.execute(select(Job.status, func.count(Job.id)).group_by(Job.status)).all()
    stats = {status: 0 for status in JOB_STATUSES}
    for status, count in rows:
        stats[status] = int(count)
    return stats


def cancel_pending_jobs(db: Session, event_id: str) -> int:
    """Fail every not-yet-claimed job for an event. Running jobs are left alone."""
    now = utcnow()
    result = db.execute(
        update(Job)
        .where(Job.event_id == event_id, Job.status.in_(CLAIMABLE_STATUSES))
        .values(status="failed", error_message=CANCELLED_MESSAGE, completed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.info("Cancelled %s pending job(s) for event %s", result.rowcount, event_id)
    return int(result.rowcount or 0)


def reclaim_stale_jobs(db: Session, lease_seconds: int) -> int:
    """
    Hand `running` jobs whose worker has held them longer than the lease back
    to the retry policy, as if the attempt had failed retryably.
    """
    if lease_seconds <= 0:
        return 0

    cutoff = utcnow() - timedelta(seconds=lease_seconds)
    stale_ids = list(
        db.execute(
            select(Job.id).where(Job.status == "running", Job.started_at < cutoff)
        ).scalars()
    )
    db.commit()

    reclaimed = 0
    for job_id in stale_ids:
        try:
            fail(db, job_id, f"Worker lease expired after {lease_seconds}s", retryable=True)
        except (JobStateError, JobNotFoundError):
            # finished or removed since the sweep read it
            continue
        reclaimed += 1
    return reclaimed


def get_job_payload(job: Job) -> dict[str, Any]:
    try:
        payload = json.loads(job.payload_json or "{}")
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}
