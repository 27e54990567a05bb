import os

from celery import Celery

from voice_inbox.core.config import is_test_env, settings


def _env(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    return v if v and v.strip() else default


BROKER_URL = _env("CELERY_BROKER_URL") or _env("REDIS_URL") or "redis://localhost:6379/0"
RESULT_BACKEND = _env("CELERY_RESULT_BACKEND") or BROKER_URL

celery_app = Celery(
    "voice_inbox",
    broker=BROKER_URL,
    backend=RESULT_BACKEND,
    include=["voice_inbox.worker.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    enable_utc=True,
    timezone="UTC",
    beat_schedule={
        "queue-poll": {
            "task": "queue.poll",
            "schedule": settings.worker_poll_interval_s,
        },
    },
)

if is_test_env():
    celery_app.conf.update(task_always_eager=True, task_eager_propagates=True)

__all__ = ["celery_app"]
