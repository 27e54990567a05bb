"""
Projection entities derived from an event's extraction output.

Every row is owned by exactly one source event (the `manual` sentinel event
for hand-entered rows) and optionally linked to one epic.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from voice_inbox.db.base import Base, new_id, utcnow


class _ProjectionMixin:
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    source_event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    epic_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("epics.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Action(_ProjectionMixin, Base):
    __tablename__ = "actions"

    type: Mapped[str] = mapped_column(String(16), nullable=False, index=True)  # follow_up|deadline|email
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String(2), nullable=False, default="P2")  # P0|P1|P2
    due_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class Mention(Base):
    __tablename__ = "mentions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    action_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("actions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class Blocker(_ProjectionMixin, Base):
    __tablename__ = "blockers"

    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")  # open|resolved
    owner: Mapped[str | None] = mapped_column(String(200), nullable=True)
    eta: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class Dependency(_ProjectionMixin, Base):
    __tablename__ = "dependencies"

    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")
    owner: Mapped[str | None] = mapped_column(String(200), nullable=True)
    eta: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class Issue(_ProjectionMixin, Base):
    __tablename__ = "issues"

    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class KnowledgeItem(_ProjectionMixin, Base):
    __tablename__ = "knowledge_items"

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False, default="tech")  # tech|decision|process
    tags_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    body_md: Mapped[str] = mapped_column(Text, nullable=False, default="")


# Deletion order for clearing an event (mentions cascade with actions)
PROJECTION_MODELS = (Action, Blocker, Dependency, Issue, KnowledgeItem)
