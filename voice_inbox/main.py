from fastapi import Depends, FastAPI
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.orm import Session

from voice_inbox.api.events import router as events_router
from voice_inbox.api.jobs import router as jobs_router
from voice_inbox.db.session import get_db
from voice_inbox.services.llm.client import LlmBackend, build_llm_client

app = FastAPI(title="Voice Inbox Worker API", version="0.1.0")
app.include_router(jobs_router)
app.include_router(events_router)

_llm: LlmBackend | None = None


def get_llm() -> LlmBackend:
    global _llm
    if _llm is None:
        _llm = build_llm_client()
    return _llm


class HealthResponse(BaseModel):
    ok: bool
    service: str
    version: str
    db_ok: bool
    llm_ok: bool


@app.get("/health", response_model=HealthResponse)
def health(db: Session = Depends(get_db), llm: LlmBackend = Depends(get_llm)) -> HealthResponse:
    db_ok = False
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except Exception:
        db_ok = False
    finally:
        db.rollback()

    llm_ok = llm.health_check()
    return HealthResponse(ok=True, service="worker-api", version=app.version, db_ok=db_ok, llm_ok=llm_ok)
