from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select, union
from sqlalchemy.orm import Session

from voice_inbox.models.epic import Epic, EpicAlias
from voice_inbox.models.event import Event
from voice_inbox.models.projections import PROJECTION_MODELS, Action, Blocker, Dependency, Issue

logger = logging.getLogger(__name__)

_word_re = re.compile(r"[^\W_]+", re.UNICODE)

SNAPSHOT_OPEN_LIMIT = 10
RECENT_EVENTS_LIMIT = 3
RECENT_EVENT_SNIPPET_CHARS = 200


def tokenize(text: str) -> list[str]:
    """Lowercase alphanumeric words of length >= 2."""
    return [w for w in _word_re.findall((text or "").lower()) if len(w) >= 2]


def normalize_alias(alias: str) -> str:
    return " ".join(tokenize(alias))


@dataclass
class EpicSnapshot:
    """Everything the extraction prompt needs to know about one epic."""

    epic_id: str
    title: str
    description: str | None
    aliases: list[str] = field(default_factory=list)
    open_actions: list[dict[str, Any]] = field(default_factory=list)
    open_blockers: list[str] = field(default_factory=list)
    open_dependencies: list[str] = field(default_factory=list)
    open_issues: list[str] = field(default_factory=list)
    recent_events: list[dict[str, Any]] = field(default_factory=list)


def find_epic_by_id(db: Session, epic_id: str) -> Epic | None:
    return db.get(Epic, epic_id)


def create_epic(
    db: Session,
    title: str,
    description: str | None = None,
    aliases: list[str] | None = None,
) -> Epic:
    """
    Create an active epic. Aliases whose normalized form is empty or already
    taken by another epic are skipped.
    """
    epic = Epic(title=title.strip(), description=(description or "").strip() or None, status="active")
    db.add(epic)
    db.flush()

    taken = set(db.execute(select(EpicAlias.alias_norm)).scalars())
    for alias in [title, *(aliases or [])]:
        norm = normalize_alias(alias)
        if not norm or norm in taken:
            continue
        db.add(EpicAlias(epic_id=epic.id, alias=alias.strip(), alias_norm=norm))
        taken.add(norm)

    db.commit()
    logger.info("Created epic %s (%s)", epic.id, epic.title)
    return epic


def get_aliases(db: Session, epic_id: str) -> list[str]:
    return list(
        db.execute(
            select(EpicAlias.alias).where(EpicAlias.epic_id == epic_id).order_by(EpicAlias.alias_norm)
        ).scalars()
    )


def _recent_epic_events(db: Session, epic_id: str, exclude_event_id: str | None) -> list[dict[str, Any]]:
    owned = union(
        *[select(m.source_event_id).where(m.epic_id == epic_id) for m in PROJECTION_MODELS]
    ).subquery()

    stmt = (
        select(Event)
        .where(Event.id.in_(select(owned.c.source_event_id)))
        .where(Event.transcript.is_not(None))
        .order_by(Event.created_at.desc())
        .limit(RECENT_EVENTS_LIMIT + 1)
    )
    out: list[dict[str, Any]] = []
    for ev in db.execute(stmt).scalars():
        if ev.id == exclude_event_id:
            continue
        out.append(
            {
                "id": ev.id,
                "created_at": ev.created_at.isoformat(),
                "snippet": (ev.transcript or "")[:RECENT_EVENT_SNIPPET_CHARS],
            }
        )
    return out[:RECENT_EVENTS_LIMIT]


def get_epic_snapshot(db: Session, epic_id: str, exclude_event_id: str | None = None) -> EpicSnapshot | None:
    epic = db.get(Epic, epic_id)
    if epic is None:
        return None

    actions = list(
        db.execute(
            select(Action)
            .where(Action.epic_id == epic_id, Action.completed_at.is_(None))
            .order_by(Action.created_at.desc())
            .limit(SNAPSHOT_OPEN_LIMIT)
        ).scalars()
    )

    def open_descriptions(model) -> list[str]:
        return list(
            db.execute(
                select(model.description)
                .where(model.epic_id == epic_id, model.status == "open")
                .order_by(model.created_at.desc())
                .limit(SNAPSHOT_OPEN_LIMIT)
            ).scalars()
        )

    return EpicSnapshot(
        epic_id=epic.id,
        title=epic.title,
        description=epic.description,
        aliases=get_aliases(db, epic_id),
        open_actions=[{"title": a.title, "priority": a.priority, "type": a.type} for a in actions],
        open_blockers=open_descriptions(Blocker),
        open_dependencies=open_descriptions(Dependency),
        open_issues=open_descriptions(Issue),
        recent_events=_recent_epic_events(db, epic_id, exclude_event_id),
    )
