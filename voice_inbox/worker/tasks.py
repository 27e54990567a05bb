from __future__ import annotations

from voice_inbox.worker.celery_app import celery_app
from voice_inbox.worker.runner import WorkerRunner, build_runner

_runner: WorkerRunner | None = None


def get_runner() -> WorkerRunner:
    global _runner
    if _runner is None:
        _runner = build_runner()
    return _runner


@celery_app.task(name="queue.poll")
def poll_queue() -> dict:
    processed = get_runner().run_once()
    return {"ok": True, "processed": processed}
