from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from voice_inbox.db.base import Base, new_id, utcnow

# Manual entries (created outside of a transcript) hang off this event.
MANUAL_EVENT_ID = "manual"


class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)

    # queued|transcribed|processing|needs_review|completed|failed
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="queued")
    status_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_events_status", "status"),
        Index("idx_events_created_at", "created_at"),
    )


class EventRun(Base):
    """Observability trace: one row per processing pass over an event."""

    __tablename__ = "event_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    event_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    job_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # success|error
    input_snapshot: Mapped[str] = mapped_column(Text, nullable=False)  # JSON string
    output_snapshot: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON string
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
