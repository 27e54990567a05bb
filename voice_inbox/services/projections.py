"""
Projection writer.

Projections are derived data: every row written for an event is replaced
wholesale when the event is extracted again, so re-running an extraction
with the same output leaves the same set of rows behind.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from voice_inbox.db.base import new_id
from voice_inbox.models.projections import (
    PROJECTION_MODELS,
    Action,
    Blocker,
    Dependency,
    Issue,
    KnowledgeItem,
    Mention,
)
from voice_inbox.services.llm.schema import ExtractionOutput

logger = logging.getLogger(__name__)


def _naive_utc(dt: datetime | None) -> datetime | None:
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def clear_projections(db: Session, event_id: str, commit: bool = True) -> dict[str, int]:
    """Delete every projection row owned by an event. Returns deleted counts by table."""
    action_ids = select(Action.id).where(Action.source_event_id == event_id)
    counts = {
        "mentions": db.execute(delete(Mention).where(Mention.action_id.in_(action_ids))).rowcount or 0
    }
    for model in PROJECTION_MODELS:
        res = db.execute(delete(model).where(model.source_event_id == event_id))
        counts[model.__tablename__] = res.rowcount or 0
    if commit:
        db.commit()
    return counts


def count_projections(db: Session, event_id: str) -> dict[str, int]:
    counts = {}
    for model in PROJECTION_MODELS:
        counts[model.__tablename__] = db.execute(
            select(func.count(model.id)).where(model.source_event_id == event_id)
        ).scalar_one()
    counts["mentions"] = db.execute(
        select(func.count(Mention.id))
        .join(Action, Action.id == Mention.action_id)
        .where(Action.source_event_id == event_id)
    ).scalar_one()
    return counts


def persist_projections(
    db: Session,
    event_id: str,
    output: ExtractionOutput,
    epic_id: str | None,
) -> dict[str, int]:
    """
    Replace the projection set of `event_id` with the rows described by
    `output`, all in one transaction.
    """
    try:
        clear_projections(db, event_id, commit=False)

        owned = {"source_event_id": event_id, "epic_id": epic_id}
        actions: list[Action] = []
        mentions: list[tuple[str, list[str]]] = []

        for a in output.new_actions:
            action = Action(
                id=new_id(),
                type=a.type,
                title=a.title,
                body=a.body or None,
                priority=a.priority,
                due_at=_naive_utc(a.due_at),
                **owned,
            )
            actions.append(action)
            if a.mentions:
                mentions.append((action.id, a.mentions))

        # the parallel lists may restate an action already given in new_actions
        seen_deadlines = {(a.title.strip().casefold(), a.due_at) for a in actions if a.type == "deadline"}
        email_actions = {a.title.strip().casefold(): a for a in actions if a.type == "email"}

        for d in output.new_deadlines:
            key = (d.title.strip().casefold(), _naive_utc(d.due_at))
            if key in seen_deadlines:
                continue
            seen_deadlines.add(key)
            actions.append(
                Action(
                    id=new_id(),
                    type="deadline",
                    title=d.title,
                    priority=d.priority,
                    due_at=_naive_utc(d.due_at),
                    **owned,
                )
            )

        for e in output.email_drafts:
            existing = email_actions.get(e.subject.strip().casefold())
            if existing is not None:
                if not existing.body and e.body:
                    existing.body = e.body
                continue
            action = Action(id=new_id(), type="email", title=e.subject, body=e.body or None, priority="P2", **owned)
            email_actions[e.subject.strip().casefold()] = action
            actions.append(action)

        db.add_all(actions)
        # mentions reference actions by FK; make sure the parents are inserted first
        db.flush()

        mention_count = 0
        for action_id, names in mentions:
            seen = set()
            for name in names:
                name = name.strip()
                if name and name.lower() not in seen:
                    seen.add(name.lower())
                    db.add(Mention(action_id=action_id, name=name))
                    mention_count += 1

        for b in output.blockers:
            db.add(Blocker(description=b.description, status=b.status, owner=b.owner, eta=b.eta, **owned))
        for d in output.dependencies:
            db.add(Dependency(description=d.description, status=d.status, owner=d.owner, eta=d.eta, **owned))
        for i in output.issues:
            db.add(Issue(description=i.description, status=i.status, **owned))
        for k in output.knowledge_items:
            db.add(
                KnowledgeItem(
                    title=k.title,
                    kind=k.kind,
                    tags_json=json.dumps(k.tags, ensure_ascii=False),
                    body_md=k.body_md,
                    **owned,
                )
            )

        db.commit()
    except Exception:
        db.rollback()
        raise

    counts = {
        "actions": len(actions),
        "mentions": mention_count,
        "blockers": len(output.blockers),
        "dependencies": len(output.dependencies),
        "issues": len(output.issues),
        "knowledge_items": len(output.knowledge_items),
    }
    logger.info("Persisted projections for event %s: %s", event_id, counts)
    return counts
