from datetime import date

from voice_inbox.services.epics import EpicSnapshot
from voice_inbox.services.llm.prompts import (
    ExtractionContext,
    build_extraction_prompt,
    build_retry_prompt,
    build_system_prompt,
    truncate_transcript,
)
from voice_inbox.services.search import SearchHit


def test_truncate_keeps_head_and_tail():
    assert truncate_transcript("short") == "short"
    assert truncate_transcript("x" * 8000) == "x" * 8000

    text = "h" * 4000 + "m" * 1000 + "t" * 4000
    out = truncate_transcript(text)
    assert out.startswith("h" * 4000 + "\n\n[... 1000 characters omitted ...]")
    assert out.endswith("t" * 4000)
    assert "m" * 10 not in out


def test_prompt_sections_in_order():
    snap = EpicSnapshot(
        epic_id="ep1",
        title="Payments",
        description=None,
        aliases=["pagos"],
        open_actions=[{"title": "Revisar PR", "priority": "P1", "type": "follow_up"}],
        open_blockers=["Credenciales del banco"],
        recent_events=[{"id": "ev0", "created_at": "2026-01-30T10:00:00", "snippet": "ayer hablamos"}],
    )
    ctx = ExtractionContext(
        transcript="nota de hoy",
        epic_snapshot=snap,
        related_knowledge=[SearchHit(id="k1", title="Reintentos", content="z" * 300, rank=0, kind="decision")],
    )
    prompt = build_extraction_prompt(ctx)

    order = [
        "JSON SCHEMA",
        "--- EPIC CONTEXT ---",
        "Open blockers:",
        "- [P1] Revisar PR",
        "--- RECENT EVENTS FROM THIS EPIC ---",
        "--- RELATED KNOWLEDGE ---",
        "--- TRANSCRIPT TO ANALYZE ---",
    ]
    positions = [prompt.index(marker) for marker in order]
    assert positions == sorted(positions)
    assert "Description: N/A" in prompt
    assert "Reintentos [decision]: " + "z" * 200 + "..." in prompt
    assert prompt.endswith("nota de hoy")


def test_prompt_without_epic_has_no_epic_section():
    prompt = build_extraction_prompt(ExtractionContext(transcript="hola"))
    assert "EPIC CONTEXT" not in prompt
    assert "RELATED KNOWLEDGE" not in prompt


def test_retry_prompt_appends_failure():
    out = build_retry_prompt("ORIGINAL", '{"bad": }', "Invalid JSON")
    assert out.startswith("ORIGINAL\n\n--- PREVIOUS ATTEMPT FAILED ---")
    assert 'Previous response: {"bad": }' in out
    assert "Validation error: Invalid JSON" in out
    assert "no trailing commas" in out


def test_system_prompt_carries_today():
    assert "Today is 2026-02-02." in build_system_prompt(date(2026, 2, 2))


def test_truncate_clamps_keep_to_half_of_max():
    text = "".join(chr(ord("a") + i % 26) for i in range(100))
    out = truncate_transcript(text, max_chars=40, keep_chars=30)

    assert out.startswith(text[:20] + "\n\n[... 60 characters omitted ...]\n\n")
    assert out.endswith(text[-20:])
    assert len(out) == 40 + len("\n\n[... 60 characters omitted ...]\n\n")
