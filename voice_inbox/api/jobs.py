from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from voice_inbox.db.session import get_db
from voice_inbox.models.job import Job
from voice_inbox.services.jobs import get_job, get_job_payload, get_queue_stats

router = APIRouter(prefix="/jobs", tags=["jobs"])


class JobGetResponse(BaseModel):
    ok: bool
    job_id: str
    event_id: str
    job_type: str
    status: str
    attempts: int
    max_attempts: int
    run_at: str
    started_at: str | None
    completed_at: str | None
    error: str | None
    payload: dict


class QueueStatsResponse(BaseModel):
    ok: bool
    stats: dict[str, int]


def job_to_response(job: Job) -> JobGetResponse:
    return JobGetResponse(
        ok=True,
        job_id=job.id,
        event_id=job.event_id,
        job_type=job.type,
        status=job.status,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        run_at=job.run_at.isoformat(),
        started_at=job.started_at.isoformat() if job.started_at else None,
        completed_at=job.completed_at.isoformat() if job.completed_at else None,
        error=job.error_message,
        payload=get_job_payload(job),
    )


# declared before /{job_id} so "stats" is not read as an id
@router.get("/stats", response_model=QueueStatsResponse)
def queue_stats(db: Session = Depends(get_db)) -> QueueStatsResponse:
    return QueueStatsResponse(ok=True, stats=get_queue_stats(db))


@router.get("/{job_id}", response_model=JobGetResponse)
def get_job_by_id(job_id: str, db: Session = Depends(get_db)) -> JobGetResponse:
    job = get_job(db, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job_to_response(job)
