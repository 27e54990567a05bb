from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from voice_inbox.core.config import settings
from voice_inbox.services.epics import EpicSnapshot
from voice_inbox.services.search import SearchHit

KNOWLEDGE_SNIPPET_CHARS = 200

EXTRACTION_SYSTEM = """You are a structured data extractor for a tech lead's voice inbox.

You will be given the transcript of a spoken note, plus context about the
work-stream ("epic") it most likely belongs to.
Your job: extract the project information it contains as structured JSON.

Hard rules:
- Output MUST be valid JSON only. No markdown, no commentary.
- JSON MUST match the schema shown in the user message exactly.
- Spanish input is expected; English technical terms may be mixed in.
- Be conservative: set "needs_review": true if unsure which epic this belongs to.
- P0 = urgent/critical, P1 = important, P2 = normal.
- Convert relative dates ("el viernes", "next week") to absolute ISO 8601 datetimes. Today is {today}.
- Evidence snippets must be exact quotes from the transcript.
- Do not invent facts that are not in the transcript.

Labels (include all that apply):
- EpicUpdate, KnowledgeNote, ActionItem, Decision, Blocker, Issue

Actions:
- "follow_up": task without a specific date
- "deadline": task with a specific date/time
- "email": an email to send
List each item once: an action in new_actions is not repeated in new_deadlines or email_drafts.

Knowledge:
- "tech": technical details, code, architecture
- "decision": decisions made and their rationale
- "process": workflows and process notes
"""

EXTRACTION_SCHEMA = """{
  "labels": ["EpicUpdate", "KnowledgeNote", "ActionItem"],
  "resolved_epic": {"epic_id": "id or null", "confidence": 0.0},
  "epic_mentions": [{"name": "...", "confidence": 0.0}],
  "suggested_new_epic": {"title": "...", "description": "...", "aliases": ["..."]},
  "new_actions": [
    {"type": "follow_up|deadline|email", "title": "...", "priority": "P0|P1|P2",
     "due_at": "ISO 8601 or null", "mentions": ["person"], "body": "..."}
  ],
  "new_deadlines": [{"title": "...", "priority": "P0|P1", "due_at": "ISO 8601 (required)"}],
  "blockers": [{"description": "...", "status": "open", "owner": null, "eta": null}],
  "dependencies": [{"description": "...", "status": "open", "owner": null, "eta": null}],
  "issues": [{"description": "...", "status": "open"}],
  "knowledge_items": [{"title": "...", "kind": "tech|decision|process", "tags": ["..."], "body_md": "..."}],
  "email_drafts": [{"subject": "...", "body": "..."}],
  "needs_review": false,
  "evidence_snippets": ["exact quote"]
}"""

RETRY_INSTRUCTIONS = """Please fix the JSON and try again. Ensure:
1. All dates are valid ISO 8601 (e.g. "2026-02-05T14:00:00+01:00")
2. All required fields are present
3. No fields outside the schema
4. Proper JSON syntax (no trailing commas, no markdown)"""


@dataclass
class ExtractionContext:
    transcript: str
    epic_snapshot: EpicSnapshot | None = None
    related_knowledge: list[SearchHit] = field(default_factory=list)
    today: date | None = None


def truncate_transcript(
    transcript: str,
    max_chars: int | None = None,
    keep_chars: int | None = None,
) -> str:
    """Keep the head and tail of an over-long transcript."""
    max_chars = settings.transcript_max_chars if max_chars is None else max_chars
    keep_chars = settings.transcript_keep_chars if keep_chars is None else keep_chars

    if len(transcript) <= max_chars:
        return transcript
    # head and tail never overlap
    keep_chars = min(keep_chars, max_chars // 2)
    omitted = len(transcript) - 2 * keep_chars
    return (
        transcript[:keep_chars]
        + f"\n\n[... {omitted} characters omitted ...]\n\n"
        + transcript[len(transcript) - keep_chars :]
    )


def build_system_prompt(today: date | None = None) -> str:
    return EXTRACTION_SYSTEM.format(today=(today or date.today()).isoformat())


def _epic_section(snap: EpicSnapshot) -> list[str]:
    lines = [
        "--- EPIC CONTEXT ---",
        f"Epic id: {snap.epic_id}",
        f"Epic: {snap.title}",
        f"Description: {snap.description or 'N/A'}",
        f"Aliases: {', '.join(snap.aliases) or 'None'}",
    ]
    for heading, items in (
        ("Open blockers", snap.open_blockers),
        ("Open dependencies", snap.open_dependencies),
        ("Open issues", snap.open_issues),
    ):
        if items:
            lines.append(f"\n{heading}:")
            lines.extend(f"- {d}" for d in items)
    if snap.open_actions:
        lines.append("\nOpen actions:")
        lines.extend(f"- [{a['priority']}] {a['title']}" for a in snap.open_actions)

    if snap.recent_events:
        lines.append("\n--- RECENT EVENTS FROM THIS EPIC ---")
        lines.extend(f"Event {e['id']} ({e['created_at']}): {e['snippet']}" for e in snap.recent_events)
    return lines


def build_extraction_prompt(ctx: ExtractionContext) -> str:
    sections = ["JSON SCHEMA (output must match exactly):", EXTRACTION_SCHEMA]

    if ctx.epic_snapshot is not None:
        sections.append("")
        sections.extend(_epic_section(ctx.epic_snapshot))

    if ctx.related_knowledge:
        sections.append("\n--- RELATED KNOWLEDGE ---")
        for k in ctx.related_knowledge:
            body = k.content or ""
            snippet = body[:KNOWLEDGE_SNIPPET_CHARS] + ("..." if len(body) > KNOWLEDGE_SNIPPET_CHARS else "")
            sections.append(f"{k.title} [{k.kind or 'note'}]: {snippet}")

    sections.append("\n--- TRANSCRIPT TO ANALYZE ---")
    sections.append(ctx.transcript)
    return "\n".join(sections)


def build_retry_prompt(original_prompt: str, previous_response: str, error: str) -> str:
    return (
        f"{original_prompt}\n\n"
        "--- PREVIOUS ATTEMPT FAILED ---\n"
        f"Previous response: {previous_response}\n"
        f"Validation error: {error}\n\n"
        f"{RETRY_INSTRUCTIONS}"
    )


def build_messages(system_prompt: str, user_prompt: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]
