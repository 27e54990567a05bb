"""
Extraction orchestrator: transcript in, projections out.

    health check -> epic scoring -> context -> model (bounded retries)
                 -> repair/validate -> epic resolution -> projections

Every outcome is returned as an `ExtractionResult`; nothing raises past
`ExtractionOrchestrator.run`.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy.orm import Session

from voice_inbox.core.config import settings
from voice_inbox.models.epic import Epic
from voice_inbox.services.epic_matcher import (
    EpicCandidate,
    find_epic_candidates,
    store_epic_candidates,
)
from voice_inbox.services.epics import create_epic, find_epic_by_id, get_epic_snapshot
from voice_inbox.services.events import get_event, record_run, set_event_status
from voice_inbox.services.llm.client import (
    LlmBackend,
    LlmResponseError,
    LlmUnavailableError,
    timeout_for_prompt,
)
from voice_inbox.services.llm.prompts import (
    ExtractionContext,
    build_extraction_prompt,
    build_messages,
    build_retry_prompt,
    build_system_prompt,
    truncate_transcript,
)
from voice_inbox.services.llm.schema import ExtractionOutput, ExtractionParseError, parse_extraction_output
from voice_inbox.services.notifications import Notifier
from voice_inbox.services.projections import persist_projections
from voice_inbox.services.search import SearchBackend

logger = logging.getLogger(__name__)

KNOWLEDGE_CONTEXT_LIMIT = 5
RESOLVED_EPIC_MIN_CONFIDENCE = 0.6
RESPONSE_SNAPSHOT_CHARS = 2000


@dataclass
class ExtractionResult:
    success: bool
    status: str  # completed | needs_review | failed
    error: str | None = None
    retryable: bool = False
    data: dict[str, Any] = field(default_factory=dict)


class ExtractionOrchestrator:
    def __init__(
        self,
        db: Session,
        llm: LlmBackend,
        search: SearchBackend,
        notifier: Notifier,
        max_attempts: int | None = None,
        today: date | None = None,
    ) -> None:
        self.db = db
        self.llm = llm
        self.search = search
        self.notifier = notifier
        self.max_attempts = max_attempts or settings.extract_max_attempts
        self.today = today

    def run(
        self,
        event_id: str,
        transcript: str | None = None,
        *,
        forced_epic_id: str | None = None,
        job_type: str = "extract",
    ) -> ExtractionResult:
        started = time.monotonic()
        try:
            return self._run(event_id, transcript, forced_epic_id, job_type, started)
        except Exception as e:
            logger.exception("Extraction crashed for event %s", event_id)
            self.db.rollback()
            try:
                self._record(event_id, job_type, started, {"phase": "extraction"}, error=str(e))
            except Exception:
                logger.exception("Could not record failed run for event %s", event_id)
                self.db.rollback()
            return ExtractionResult(False, "failed", error=f"Failed to extract: {e}", retryable=True)

    # ------------------------------------------------------------------

    def _run(
        self,
        event_id: str,
        transcript: str | None,
        forced_epic_id: str | None,
        job_type: str,
        started: float,
    ) -> ExtractionResult:
        event = get_event(self.db, event_id)
        if event is None:
            self.db.rollback()
            return ExtractionResult(False, "failed", error=f"Event {event_id} not found", retryable=False)

        transcript = transcript if transcript is not None else event.transcript
        if not transcript or not transcript.strip():
            reason = "Event has no transcript"
            set_event_status(self.db, event_id, "failed", reason)
            return ExtractionResult(False, "failed", error=reason, retryable=False)

        if not self.llm.health_check():
            reason = "LLM backend unavailable; will retry"
            set_event_status(self.db, event_id, event.status, reason)
            return ExtractionResult(False, "failed", error=reason, retryable=True)

        set_event_status(self.db, event_id, "processing")
        inputs: dict[str, Any] = {
            "transcript_length": len(transcript),
            "forced_epic_id": forced_epic_id,
        }

        candidates: list[EpicCandidate] = []
        epic_id: str | None = None
        if forced_epic_id:
            epic = find_epic_by_id(self.db, forced_epic_id)
            if epic is None:
                reason = f"Epic {forced_epic_id} not found"
                set_event_status(self.db, event_id, "failed", reason)
                return ExtractionResult(False, "failed", error=reason, retryable=False)
            epic_id = epic.id
        else:
            match = find_epic_candidates(self.db, transcript, self.search)
            candidates = match.candidates
            inputs["candidates"] = [c.to_dict() for c in candidates]
            if match.needs_review:
                if len(candidates) == 1:
                    reason = f"Low-confidence epic match ({match.top_confidence:.2f})"
                else:
                    reason = (
                        f"Ambiguous epic match: top {match.top_confidence:.2f}, "
                        f"gap {match.confidence_gap:.2f}"
                    )
                return self._needs_review(event_id, job_type, started, inputs, candidates, reason)
            if candidates:
                epic_id = candidates[0].epic_id
        inputs["epic_id"] = epic_id

        user_prompt = self._build_prompt(event_id, transcript, epic_id)
        system_prompt = build_system_prompt(self.today)
        # release the store before a long model call
        self.db.commit()

        output, attempts, raw = self._extract(system_prompt, user_prompt)
        inputs["attempts"] = attempts
        if isinstance(output, ExtractionResult):
            if output.retryable:
                set_event_status(self.db, event_id, "processing", output.error)
            else:
                set_event_status(self.db, event_id, "failed", output.error)
            self._record(event_id, job_type, started, inputs, error=output.error, raw=raw)
            return output

        epic_id, created = self._resolve_epic(output, epic_id)
        if epic_id is None and output.needs_review:
            reason = "Model could not attribute the note to an epic"
            return self._needs_review(event_id, job_type, started, inputs, candidates, reason)

        counts = persist_projections(self.db, event_id, output, epic_id)
        set_event_status(self.db, event_id, "completed", None)

        summary = {
            "epic_id": epic_id,
            "epic_created": created,
            "labels": output.labels,
            "counts": counts,
        }
        self._record(event_id, job_type, started, inputs, output=summary)
        logger.info("Event %s extracted in %s attempt(s): %s", event_id, attempts, counts)
        return ExtractionResult(True, "completed", data=summary)

    def _build_prompt(self, event_id: str, transcript: str, epic_id: str | None) -> str:
        truncated = truncate_transcript(transcript)
        snapshot = get_epic_snapshot(self.db, epic_id, exclude_event_id=event_id) if epic_id else None
        knowledge = self.search.search_knowledge(truncated, limit=KNOWLEDGE_CONTEXT_LIMIT)
        ctx = ExtractionContext(
            transcript=truncated,
            epic_snapshot=snapshot,
            related_knowledge=knowledge,
            today=self.today,
        )
        return build_extraction_prompt(ctx)

    def _extract(
        self, system_prompt: str, user_prompt: str
    ) -> tuple[ExtractionOutput | ExtractionResult, int, str | None]:
        """
        Call the model until it returns valid output or attempts run out.
        Returns (output or failure result, attempts used, last raw response).
        """
        last_response: str | None = None
        last_error: str | None = None

        for attempt in range(1, self.max_attempts + 1):
            prompt = user_prompt
            if attempt > 1:
                prompt = build_retry_prompt(user_prompt, last_response or "", last_error or "")

            try:
                completion = self.llm.chat_completion(
                    build_messages(system_prompt, prompt),
                    temperature=settings.llm_temperature,
                    max_tokens=settings.llm_max_tokens,
                    response_format={"type": "json_object"},
                    timeout_s=timeout_for_prompt(len(system_prompt) + len(prompt)),
                )
            except LlmUnavailableError as e:
                logger.warning("LLM unavailable on attempt %s: %s", attempt, e)
                failure = ExtractionResult(False, "failed", error=f"LLM backend unavailable: {e}", retryable=True)
                return failure, attempt, last_response
            except LlmResponseError as e:
                last_response, last_error = "", str(e)
                logger.warning("Attempt %s/%s: bad LLM response: %s", attempt, self.max_attempts, e)
                continue

            last_response = completion.content
            try:
                return parse_extraction_output(completion.content), attempt, last_response
            except ExtractionParseError as e:
                last_error = str(e)
                logger.warning("Attempt %s/%s: invalid extraction output: %s", attempt, self.max_attempts, e)

        failure = ExtractionResult(
            False,
            "failed",
            error=f"Invalid model output after {self.max_attempts} attempts: {last_error}",
            retryable=False,
        )
        return failure, self.max_attempts, last_response

    def _resolve_epic(self, output: ExtractionOutput, epic_id: str | None) -> tuple[str | None, bool]:
        """Returns (epic_id, created_new_epic)."""
        if epic_id is not None:
            return epic_id, False

        ref = output.resolved_epic
        if ref is not None and ref.confidence >= RESOLVED_EPIC_MIN_CONFIDENCE:
            epic = self.db.get(Epic, ref.epic_id)
            if epic is not None and epic.status == "active":
                return epic.id, False

        # a note the model wants reviewed never spawns a new epic
        if output.suggested_new_epic is not None and not output.needs_review:
            s = output.suggested_new_epic
            epic = create_epic(self.db, s.title, s.description, s.aliases)
            return epic.id, True

        return None, False

    def _needs_review(
        self,
        event_id: str,
        job_type: str,
        started: float,
        inputs: dict[str, Any],
        candidates: list[EpicCandidate],
        reason: str,
    ) -> ExtractionResult:
        store_epic_candidates(self.db, event_id, candidates)
        set_event_status(self.db, event_id, "needs_review", reason)
        self.notifier.notify_needs_review(event_id, reason, [c.to_dict() for c in candidates[:3]])

        data = {"reason": reason, "candidates": [c.to_dict() for c in candidates[:3]]}
        self._record(event_id, job_type, started, inputs, output=data)
        logger.info("Event %s needs review: %s", event_id, reason)
        return ExtractionResult(True, "needs_review", data=data)

    def _record(
        self,
        event_id: str,
        job_type: str,
        started: float,
        inputs: dict[str, Any],
        output: dict[str, Any] | None = None,
        error: str | None = None,
        raw: str | None = None,
    ) -> None:
        if get_event(self.db, event_id) is None:
            self.db.rollback()
            return
        if raw is not None and error is not None:
            output = {"last_response": raw[:RESPONSE_SNAPSHOT_CHARS]}
        record_run(
            self.db,
            event_id,
            job_type,
            "error" if error else "success",
            inputs,
            output_snapshot=output,
            error_message=error,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
