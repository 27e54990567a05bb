"""initial schema: events, jobs, epics, candidates, projections

Revision ID: 5a1c2e7f90b3
Revises:
Create Date: 2026-10-18 10:12:31.482219

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5a1c2e7f90b3"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(length=36), primary_key=True, nullable=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _owned() -> list[sa.Column]:
    return [
        sa.Column(
            "source_event_id",
            sa.String(length=36),
            sa.ForeignKey("events.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "epic_id",
            sa.String(length=36),
            sa.ForeignKey("epics.id", ondelete="SET NULL"),
            nullable=True,
        ),
    ]


def _owned_indexes(table: str) -> None:
    op.create_index(f"ix_{table}_source_event_id", table, ["source_event_id"])
    op.create_index(f"ix_{table}_epic_id", table, ["epic_id"])


def upgrade() -> None:
    op.create_table(
        "events",
        _id(),
        sa.Column("transcript", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="queued"),
        sa.Column("status_reason", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_events_status", "events", ["status"])
    op.create_index("idx_events_created_at", "events", ["created_at"])

    op.create_table(
        "event_runs",
        _id(),
        sa.Column("event_id", sa.String(length=36), nullable=False),
        sa.Column("job_type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("input_snapshot", sa.Text(), nullable=False),
        sa.Column("output_snapshot", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_event_runs_event_id", "event_runs", ["event_id"])

    op.create_table(
        "jobs",
        _id(),
        sa.Column(
            "event_id",
            sa.String(length=36),
            sa.ForeignKey("events.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("payload_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("run_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_jobs_event_id", "jobs", ["event_id"])
    op.create_index("idx_jobs_status_run_at", "jobs", ["status", "run_at"])

    op.create_table(
        "epics",
        _id(),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        *_timestamps(),
    )
    op.create_index("ix_epics_title", "epics", ["title"])

    op.create_table(
        "epic_aliases",
        _id(),
        sa.Column(
            "epic_id",
            sa.String(length=36),
            sa.ForeignKey("epics.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("alias", sa.String(length=200), nullable=False),
        sa.Column("alias_norm", sa.String(length=200), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("alias_norm"),
    )
    op.create_index("ix_epic_aliases_epic_id", "epic_aliases", ["epic_id"])

    op.create_table(
        "event_epic_candidates",
        _id(),
        sa.Column(
            "event_id",
            sa.String(length=36),
            sa.ForeignKey("events.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "epic_id",
            sa.String(length=36),
            sa.ForeignKey("epics.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("event_id", "rank", name="uq_candidates_event_rank"),
    )
    op.create_index("idx_candidates_event_id", "event_epic_candidates", ["event_id"])

    op.create_table(
        "actions",
        _id(),
        *_owned(),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("priority", sa.String(length=2), nullable=False, server_default="P2"),
        sa.Column("due_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    _owned_indexes("actions")
    op.create_index("ix_actions_type", "actions", ["type"])

    op.create_table(
        "mentions",
        _id(),
        sa.Column(
            "action_id",
            sa.String(length=36),
            sa.ForeignKey("actions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_mentions_action_id", "mentions", ["action_id"])
    op.create_index("ix_mentions_name", "mentions", ["name"])

    for table, extra in (
        (
            "blockers",
            [
                sa.Column("owner", sa.String(length=200), nullable=True),
                sa.Column("eta", sa.String(length=64), nullable=True),
            ],
        ),
        (
            "dependencies",
            [
                sa.Column("owner", sa.String(length=200), nullable=True),
                sa.Column("eta", sa.String(length=64), nullable=True),
            ],
        ),
        ("issues", []),
    ):
        op.create_table(
            table,
            _id(),
            *_owned(),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="open"),
            *extra,
            sa.Column("resolved_at", sa.DateTime(), nullable=True),
            *_timestamps(),
        )
        _owned_indexes(table)

    op.create_table(
        "knowledge_items",
        _id(),
        *_owned(),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False, server_default="tech"),
        sa.Column("tags_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("body_md", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
    )
    _owned_indexes("knowledge_items")


def downgrade() -> None:
    for table in (
        "knowledge_items",
        "issues",
        "dependencies",
        "blockers",
        "mentions",
        "actions",
        "event_epic_candidates",
        "epic_aliases",
        "epics",
        "jobs",
        "event_runs",
        "events",
    ):
        op.drop_table(table)
