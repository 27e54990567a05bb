from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy.orm import Session

from voice_inbox.db.base import utcnow
from voice_inbox.models.event import MANUAL_EVENT_ID, Event, EventRun
from voice_inbox.models.job import Job
from voice_inbox.services import jobs
from voice_inbox.services.projections import clear_projections

logger = logging.getLogger(__name__)

EVENT_STATUSES = ("queued", "transcribed", "processing", "needs_review", "completed", "failed")


class EventNotFoundError(LookupError):
    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event {event_id} not found")
        self.event_id = event_id


def get_event(db: Session, event_id: str) -> Event | None:
    return db.get(Event, event_id, populate_existing=True)


def create_event(db: Session, transcript: str | None, status: str = "transcribed") -> Event:
    ev = Event(transcript=transcript, status=status)
    db.add(ev)
    db.commit()
    return ev


def set_event_status(db: Session, event_id: str, status: str, reason: str | None = None) -> Event:
    if status not in EVENT_STATUSES:
        raise ValueError(f"Unknown event status: {status}")
    ev = get_event(db, event_id)
    if ev is None:
        raise EventNotFoundError(event_id)
    ev.status = status
    ev.status_reason = reason
    ev.updated_at = utcnow()
    db.commit()
    return ev


def ensure_manual_event(db: Session) -> Event:
    """The sentinel event that owns hand-entered projection rows."""
    ev = db.get(Event, MANUAL_EVENT_ID)
    if ev is None:
        ev = Event(id=MANUAL_EVENT_ID, transcript=None, status="completed", status_reason="Manual entries")
        db.add(ev)
    db.commit()
    return ev


def record_run(
    db: Session,
    event_id: str,
    job_type: str,
    status: str,
    input_snapshot: dict[str, Any],
    output_snapshot: dict[str, Any] | None = None,
    error_message: str | None = None,
    duration_ms: int | None = None,
) -> EventRun:
    run = EventRun(
        event_id=event_id,
        job_type=job_type,
        status=status,
        input_snapshot=json.dumps(input_snapshot, ensure_ascii=False, default=str),
        output_snapshot=json.dumps(output_snapshot, ensure_ascii=False, default=str) if output_snapshot else None,
        error_message=error_message,
        duration_ms=duration_ms,
    )
    db.add(run)
    db.commit()
    return run


def request_reprocess(db: Session, event_id: str, epic_id: str | None = None) -> Job:
    """Cancel whatever is still queued for the event and queue a fresh pass."""
    if get_event(db, event_id) is None:
        raise EventNotFoundError(event_id)
    jobs.cancel_pending_jobs(db, event_id)
    payload = {"epic_id": epic_id} if epic_id else {}
    return jobs.enqueue(db, event_id, "reprocess", payload)


def cancel_event(db: Session, event_id: str, reason: str = "Cancelled") -> dict[str, int]:
    """Stop pending work for an event and drop everything derived from it."""
    if get_event(db, event_id) is None:
        raise EventNotFoundError(event_id)
    jobs.cancel_pending_jobs(db, event_id)
    deleted = clear_projections(db, event_id)
    set_event_status(db, event_id, "failed", reason)
    logger.info("Cancelled event %s, deleted %s", event_id, deleted)
    return deleted
