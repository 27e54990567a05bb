from voice_inbox.models.epic import Epic, EpicAlias
from voice_inbox.services.epics import create_epic, get_aliases, get_epic_snapshot
from voice_inbox.services.events import create_event
from voice_inbox.services.llm.schema import ExtractionOutput
from voice_inbox.services.projections import persist_projections
from voice_inbox.services.search import SqlSearchBackend, query_terms


def test_query_terms_drop_stopwords_and_rank_by_frequency():
    terms = query_terms("the deploy de pagos, pagos y más pagos con el deploy para kafka")
    assert terms[:2] == ["pagos", "deploy"]
    assert "para" not in terms
    assert "the" not in terms


def test_search_epics_ranks_by_term_hits(db):
    pay = create_epic(db, "Payments gateway", "Stripe and bank transfers", aliases=["pagos"])
    create_epic(db, "Bank reconciliation")
    create_epic(db, "Frontend redesign")

    hits = SqlSearchBackend(db).search_epics("pagos por transferencia del bank, stripe caído", limit=3)

    assert hits[0].id == pay.id
    assert [h.rank for h in hits] == list(range(len(hits)))
    assert all(h.title != "Frontend redesign" for h in hits)


def test_search_epics_skips_archived(db):
    epic = create_epic(db, "Kafka migration")
    db.get(Epic, epic.id).status = "archived"
    db.commit()
    assert SqlSearchBackend(db).search_epics("kafka kafka") == []


def test_search_knowledge(db):
    ev = create_event(db, "x")
    persist_projections(
        db,
        ev.id,
        ExtractionOutput.model_validate(
            {
                "knowledge_items": [
                    {"title": "Kafka retention", "kind": "tech", "body_md": "Retention is 7 days"},
                    {"title": "Hiring process", "kind": "process", "body_md": "Two rounds"},
                ]
            }
        ),
        None,
    )
    hits = SqlSearchBackend(db).search_knowledge("what is the kafka retention")
    assert [h.title for h in hits] == ["Kafka retention"]
    assert hits[0].kind == "tech"


def test_create_epic_skips_taken_aliases(db):
    create_epic(db, "Payments", aliases=["pagos"])
    second = create_epic(db, "Pagos LATAM", aliases=["PAGOS", "latam"])

    assert get_aliases(db, second.id) == ["latam", "Pagos LATAM"]
    assert db.query(EpicAlias).filter(EpicAlias.alias_norm == "pagos").count() == 1


def test_epic_snapshot_collects_open_items_and_recent_events(db):
    epic = create_epic(db, "Payments", aliases=["pagos"])
    old = create_event(db, "ayer revisamos el flujo de pagos " * 20)
    persist_projections(
        db,
        old.id,
        ExtractionOutput.model_validate(
            {
                "new_actions": [{"type": "follow_up", "title": "Llamar al banco", "priority": "P0"}],
                "blockers": [{"description": "Sin credenciales"}],
                "issues": [{"description": "Webhook duplicado"}],
            }
        ),
        epic.id,
    )
    current = create_event(db, "hoy")
    persist_projections(db, current.id, ExtractionOutput(), epic.id)

    snap = get_epic_snapshot(db, epic.id, exclude_event_id=current.id)

    assert snap.title == "Payments"
    assert snap.open_actions == [{"title": "Llamar al banco", "priority": "P0", "type": "follow_up"}]
    assert snap.open_blockers == ["Sin credenciales"]
    assert snap.open_issues == ["Webhook duplicado"]
    assert snap.open_dependencies == []
    assert [e["id"] for e in snap.recent_events] == [old.id]
    assert len(snap.recent_events[0]["snippet"]) == 200
    assert get_epic_snapshot(db, "missing") is None
