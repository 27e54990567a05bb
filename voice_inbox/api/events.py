from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from voice_inbox.api.jobs import JobGetResponse, job_to_response
from voice_inbox.db.session import get_db
from voice_inbox.services.epic_matcher import get_stored_candidates
from voice_inbox.services.epics import find_epic_by_id
from voice_inbox.services.events import get_event, request_reprocess
from voice_inbox.services.jobs import get_jobs_by_event

router = APIRouter(prefix="/events", tags=["events"])


class EventJobsResponse(BaseModel):
    ok: bool
    event_id: str
    jobs: list[JobGetResponse]


class CandidateItem(BaseModel):
    epic_id: str
    title: str
    confidence: float
    rank: int


class EventCandidatesResponse(BaseModel):
    ok: bool
    event_id: str
    status: str
    status_reason: str | None
    candidates: list[CandidateItem]


class ReprocessRequest(BaseModel):
    epic_id: str | None = None


class ReprocessResponse(BaseModel):
    ok: bool
    event_id: str
    job_id: str


def _event_or_404(db: Session, event_id: str):
    ev = get_event(db, event_id)
    if ev is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return ev


@router.get("/{event_id}/jobs", response_model=EventJobsResponse)
def list_event_jobs(event_id: str, db: Session = Depends(get_db)) -> EventJobsResponse:
    _event_or_404(db, event_id)
    return EventJobsResponse(
        ok=True,
        event_id=event_id,
        jobs=[job_to_response(j) for j in get_jobs_by_event(db, event_id)],
    )


@router.get("/{event_id}/candidates", response_model=EventCandidatesResponse)
def list_event_candidates(event_id: str, db: Session = Depends(get_db)) -> EventCandidatesResponse:
    ev = _event_or_404(db, event_id)
    return EventCandidatesResponse(
        ok=True,
        event_id=event_id,
        status=ev.status,
        status_reason=ev.status_reason,
        candidates=[CandidateItem(**c) for c in get_stored_candidates(db, event_id)],
    )


@router.post("/{event_id}/reprocess", response_model=ReprocessResponse)
def reprocess_event(event_id: str, req: ReprocessRequest, db: Session = Depends(get_db)) -> ReprocessResponse:
    _event_or_404(db, event_id)
    epic_id = (req.epic_id or "").strip() or None
    if epic_id:
        epic = find_epic_by_id(db, epic_id)
        if epic is None or epic.status != "active":
            raise HTTPException(status_code=400, detail="Epic not found or archived")

    job = request_reprocess(db, event_id, epic_id)
    return ReprocessResponse(ok=True, event_id=event_id, job_id=job.id)
