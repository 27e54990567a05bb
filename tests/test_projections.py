import json
from datetime import datetime

from sqlalchemy import func, select

from voice_inbox.models.projections import Action, KnowledgeItem, Mention
from voice_inbox.services.epics import create_epic
from voice_inbox.services.events import cancel_event, create_event, ensure_manual_event, get_event
from voice_inbox.services.llm.schema import ExtractionOutput
from voice_inbox.services.projections import clear_projections, count_projections, persist_projections

OUTPUT = ExtractionOutput.model_validate(
    {
        "labels": ["ActionItem", "Blocker"],
        "new_actions": [
            {
                "type": "follow_up",
                "title": "Revisar PR de pagos",
                "priority": "P1",
                "mentions": ["Ana", "Luis", "ana"],
            },
        ],
        "new_deadlines": [
            {"title": "Release v2", "priority": "P0", "due_at": "2026-03-06T17:00:00+01:00"},
        ],
        "email_drafts": [{"subject": "Estado de pagos", "body": "Hola equipo"}],
        "blockers": [{"description": "Esperando credenciales del banco", "owner": "Luis"}],
        "dependencies": [{"description": "API de auth v3"}],
        "issues": [{"description": "Tests flaky en CI"}],
        "knowledge_items": [
            {"title": "Reintentos", "kind": "decision", "tags": ["queue", "retry"], "body_md": "Backoff 2^n"},
        ],
    }
)


def test_persist_writes_every_projection_kind(db):
    ev = create_event(db, "nota")
    epic = create_epic(db, "Payments")

    counts = persist_projections(db, ev.id, OUTPUT, epic.id)
    assert counts == {
        "actions": 3,
        "mentions": 2,
        "blockers": 1,
        "dependencies": 1,
        "issues": 1,
        "knowledge_items": 1,
    }
    assert count_projections(db, ev.id) == counts

    actions = {a.type: a for a in db.execute(select(Action)).scalars()}
    assert set(actions) == {"follow_up", "deadline", "email"}
    assert actions["email"].title == "Estado de pagos"
    assert actions["email"].body == "Hola equipo"
    # stored as naive UTC
    assert actions["deadline"].due_at == datetime(2026, 3, 6, 16, 0, 0)
    assert all(a.epic_id == epic.id and a.source_event_id == ev.id for a in actions.values())

    k = db.execute(select(KnowledgeItem)).scalar_one()
    assert json.loads(k.tags_json) == ["queue", "retry"]


def test_persist_twice_is_idempotent(db):
    ev = create_event(db, "nota")
    first = persist_projections(db, ev.id, OUTPUT, None)
    counts_after_first = count_projections(db, ev.id)

    second = persist_projections(db, ev.id, OUTPUT, None)
    assert first == second
    assert count_projections(db, ev.id) == counts_after_first
    assert db.execute(select(func.count(Mention.id))).scalar_one() == 2


def test_persist_only_touches_its_own_event(db):
    a = create_event(db, "a")
    b = create_event(db, "b")
    persist_projections(db, a.id, OUTPUT, None)
    persist_projections(db, b.id, ExtractionOutput(), None)

    assert count_projections(db, a.id)["actions"] == 3
    assert count_projections(db, b.id)["actions"] == 0


def test_clear_projections_removes_mentions_with_actions(db):
    ev = create_event(db, "nota")
    persist_projections(db, ev.id, OUTPUT, None)

    deleted = clear_projections(db, ev.id)
    assert deleted["actions"] == 3
    assert deleted["mentions"] == 2
    assert all(v == 0 for v in count_projections(db, ev.id).values())


def test_cancel_event_clears_and_fails(db):
    ev = create_event(db, "nota")
    persist_projections(db, ev.id, OUTPUT, None)

    cancel_event(db, ev.id, "Deleted by user")
    assert get_event(db, ev.id).status == "failed"
    assert get_event(db, ev.id).status_reason == "Deleted by user"
    assert count_projections(db, ev.id)["blockers"] == 0


def test_manual_event_is_created_once(db):
    first = ensure_manual_event(db)
    second = ensure_manual_event(db)
    assert first.id == second.id == "manual"


def test_parallel_lists_do_not_duplicate_actions(db):
    ev = create_event(db, "nota")
    output = ExtractionOutput.model_validate(
        {
            "new_actions": [
                {"type": "deadline", "title": "Release v2", "priority": "P0", "due_at": "2026-03-06T17:00:00+01:00"},
                {"type": "email", "title": "Estado de pagos", "priority": "P2"},
            ],
            "new_deadlines": [
                {"title": "release v2", "priority": "P0", "due_at": "2026-03-06T16:00:00Z"},
                {"title": "Release v2", "priority": "P1", "due_at": "2026-03-13T16:00:00Z"},
            ],
            "email_drafts": [{"subject": "Estado de pagos", "body": "Hola equipo"}],
        }
    )

    counts = persist_projections(db, ev.id, output, None)

    assert counts["actions"] == 3
    rows = sorted((a.type, a.title, a.due_at) for a in db.execute(select(Action)).scalars())
    assert rows == [
        ("deadline", "Release v2", datetime(2026, 3, 6, 16, 0, 0)),
        ("deadline", "Release v2", datetime(2026, 3, 13, 16, 0, 0)),
        ("email", "Estado de pagos", None),
    ]
    email = db.execute(select(Action).where(Action.type == "email")).scalar_one()
    assert email.body == "Hola equipo"
