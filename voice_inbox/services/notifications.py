from __future__ import annotations

import logging
from typing import Any, Protocol

from sqlalchemy.orm import Session

from voice_inbox.services import jobs

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify_needs_review(self, event_id: str, reason: str, candidates: list[dict[str, Any]]) -> None: ...


class PushDispatcher(Protocol):
    def send(self, payload: dict[str, Any]) -> None: ...


def needs_review_payload(event_id: str, reason: str, candidates: list[dict[str, Any]]) -> dict[str, Any]:
    titles = [c.get("title") for c in candidates if c.get("title")]
    body = reason
    if titles:
        body = f"{reason}. Candidates: {', '.join(titles[:3])}"
    return {
        "notification_type": "needs_review",
        "title": "Voice note needs review",
        "body": body,
        "event_id": event_id,
    }


class QueueNotifier:
    """Defers delivery to the worker by enqueueing a `push` job."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def notify_needs_review(self, event_id: str, reason: str, candidates: list[dict[str, Any]]) -> None:
        jobs.enqueue(self.db, event_id, "push", needs_review_payload(event_id, reason, candidates))


class LoggingPushDispatcher:
    """Stand-in dispatcher: device delivery lives outside this service."""

    def send(self, payload: dict[str, Any]) -> None:
        logger.info(
            "Push [%s] %s: %s (event %s)",
            payload.get("notification_type"),
            payload.get("title"),
            payload.get("body"),
            payload.get("event_id"),
        )
