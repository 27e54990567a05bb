import pytest
from fastapi.testclient import TestClient

from voice_inbox.db.session import get_db
from voice_inbox.main import app, get_llm
from voice_inbox.services import jobs
from voice_inbox.services.epic_matcher import EpicCandidate, store_epic_candidates
from voice_inbox.services.epics import create_epic
from voice_inbox.services.events import create_event, set_event_status


@pytest.fixture
def client(session_factory, fake_llm):
    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_llm] = lambda: fake_llm
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def seed(session_factory):
    """Run `fn(db)` in a short-lived session so no transaction stays open."""

    def _seed(fn):
        s = session_factory()
        try:
            return fn(s)
        finally:
            s.close()

    return _seed


def test_health_ok(client, fake_llm):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["db_ok"] is True
    assert body["llm_ok"] is True

    fake_llm.healthy = False
    assert client.get("/health").json()["llm_ok"] is False


def test_job_lookup_and_stats(client, seed):
    def _make(db):
        ev = create_event(db, "x")
        job = jobs.enqueue(db, ev.id, "extract", {"transcript": "x"})
        jobs.enqueue(db, ev.id, "push")
        return job.id

    job_id = seed(_make)

    r = client.get(f"/jobs/{job_id}")
    assert r.status_code == 200
    body = r.json()
    assert body["job_type"] == "extract"
    assert body["status"] == "pending"
    assert body["payload"] == {"transcript": "x"}

    stats = client.get("/jobs/stats").json()["stats"]
    assert stats["pending"] == 2
    assert stats["failed"] == 0

    assert client.get("/jobs/missing").status_code == 404


def test_event_jobs_and_candidates(client, seed):
    def _make(db):
        ev = create_event(db, "algo del cobro")
        a = create_epic(db, "Payments")
        b = create_epic(db, "Billing")
        store_epic_candidates(
            db,
            ev.id,
            [EpicCandidate(a.id, a.title, 0.8, "search"), EpicCandidate(b.id, b.title, 0.7, "search")],
        )
        set_event_status(db, ev.id, "needs_review", "Ambiguous epic match")
        jobs.enqueue(db, ev.id, "extract")
        return ev.id, a.id

    event_id, epic_a = seed(_make)

    r = client.get(f"/events/{event_id}/candidates")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "needs_review"
    assert [c["rank"] for c in body["candidates"]] == [1, 2]
    assert body["candidates"][0]["epic_id"] == epic_a
    assert body["candidates"][0]["title"] == "Payments"

    r = client.get(f"/events/{event_id}/jobs")
    assert r.status_code == 200
    assert len(r.json()["jobs"]) == 1

    assert client.get("/events/nope/jobs").status_code == 404


def test_reprocess_cancels_pending_and_enqueues(client, seed):
    def _make(db):
        ev = create_event(db, "algo del cobro")
        epic = create_epic(db, "Payments")
        old = jobs.enqueue(db, ev.id, "extract")
        return ev.id, epic.id, old.id

    event_id, epic_id, old_job = seed(_make)

    r = client.post(f"/events/{event_id}/reprocess", json={"epic_id": epic_id})
    assert r.status_code == 200
    new_job = r.json()["job_id"]

    old = client.get(f"/jobs/{old_job}").json()
    assert old["status"] == "failed"
    assert old["error"] == jobs.CANCELLED_MESSAGE

    new = client.get(f"/jobs/{new_job}").json()
    assert new["job_type"] == "reprocess"
    assert new["payload"] == {"epic_id": epic_id}

    assert client.post(f"/events/{event_id}/reprocess", json={"epic_id": "nope"}).status_code == 400
    assert client.post("/events/nope/reprocess", json={}).status_code == 404
