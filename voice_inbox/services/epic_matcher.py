"""
Epic candidate scoring.

1. Exact alias hits in the transcript score 1.0.
2. The search backend's top epics score `base - rank * step` (rank 0 is best).
3. Per epic the two signals combine with max(); candidates sort by score,
   keeping insertion order on ties (alias hits first, then search order).

Scoring is read-only. Persisting the ranked set is a separate call.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from voice_inbox.core.config import settings
from voice_inbox.models.epic import Epic, EpicAlias, EventEpicCandidate
from voice_inbox.services.epics import tokenize
from voice_inbox.services.search import SearchBackend, SearchHit

ALIAS_SCORE = 1.0
SEARCH_LIMIT = 3
STORED_CANDIDATES = 3


@dataclass
class EpicCandidate:
    epic_id: str
    title: str
    confidence: float
    match_type: str  # alias | search | alias+search

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class EpicMatchResult:
    candidates: list[EpicCandidate]
    needs_review: bool
    top_confidence: float
    confidence_gap: float


@dataclass(frozen=True)
class AliasEntry:
    alias_norm: str
    epic_id: str
    title: str


def rank_to_score(
    rank: int,
    base: float | None = None,
    step: float | None = None,
) -> float:
    base = settings.scorer_rank_base if base is None else base
    step = settings.scorer_rank_step if step is None else step
    return max(0.0, min(base, base - rank * step))


def _contains_run(tokens: list[str], run: list[str]) -> bool:
    n = len(run)
    if n == 0 or n > len(tokens):
        return False
    if n == 1:
        return run[0] in tokens
    return any(tokens[i : i + n] == run for i in range(len(tokens) - n + 1))


def score_candidates(
    transcript: str,
    aliases: Iterable[AliasEntry],
    search_hits: Iterable[SearchHit],
) -> list[EpicCandidate]:
    tokens = tokenize(transcript)
    by_epic: dict[str, EpicCandidate] = {}

    for entry in aliases:
        if not _contains_run(tokens, entry.alias_norm.split()):
            continue
        if entry.epic_id not in by_epic:
            by_epic[entry.epic_id] = EpicCandidate(entry.epic_id, entry.title, ALIAS_SCORE, "alias")

    for hit in search_hits:
        score = rank_to_score(hit.rank)
        cand = by_epic.get(hit.id)
        if cand is None:
            by_epic[hit.id] = EpicCandidate(hit.id, hit.title, score, "search")
            continue
        if cand.match_type == "alias":
            cand.match_type = "alias+search"
        cand.confidence = max(cand.confidence, score)

    for cand in by_epic.values():
        cand.confidence = min(1.0, max(0.0, cand.confidence))

    # sorted() is stable: equal scores keep insertion order
    return sorted(by_epic.values(), key=lambda c: c.confidence, reverse=True)


def evaluate_ambiguity(
    candidates: list[EpicCandidate],
    threshold: float | None = None,
    gap: float | None = None,
) -> tuple[bool, float, float]:
    """Return (needs_review, top_confidence, confidence_gap)."""
    threshold = settings.scorer_confidence_threshold if threshold is None else threshold
    gap = settings.scorer_ambiguity_gap if gap is None else gap

    if not candidates:
        return False, 0.0, 0.0

    top = candidates[0].confidence
    if len(candidates) == 1:
        return top < threshold, top, top

    confidence_gap = top - candidates[1].confidence
    # compare with a small tolerance so 0.9 - 0.7 counts as a 0.2 gap
    confident = confidence_gap >= gap - 1e-9 and top >= threshold
    return not confident, top, confidence_gap


def load_alias_index(db: Session) -> list[AliasEntry]:
    rows = db.execute(
        select(EpicAlias.alias_norm, Epic.id, Epic.title)
        .join(Epic, Epic.id == EpicAlias.epic_id)
        .where(Epic.status == "active")
        .order_by(EpicAlias.created_at.asc(), EpicAlias.alias_norm.asc())
    ).all()
    return [AliasEntry(alias_norm=r[0], epic_id=r[1], title=r[2]) for r in rows]


def find_epic_candidates(db: Session, transcript: str, search: SearchBackend) -> EpicMatchResult:
    candidates = score_candidates(
        transcript,
        load_alias_index(db),
        search.search_epics(transcript, limit=SEARCH_LIMIT),
    )
    needs_review, top, gap = evaluate_ambiguity(candidates)
    return EpicMatchResult(
        candidates=candidates,
        needs_review=needs_review,
        top_confidence=top,
        confidence_gap=gap,
    )


def store_epic_candidates(db: Session, event_id: str, candidates: list[EpicCandidate]) -> None:
    """Replace the stored candidate set for an event with the top three."""
    db.execute(delete(EventEpicCandidate).where(EventEpicCandidate.event_id == event_id))
    for rank, cand in enumerate(candidates[:STORED_CANDIDATES], start=1):
        db.add(
            EventEpicCandidate(
                event_id=event_id,
                epic_id=cand.epic_id,
                score=cand.confidence,
                rank=rank,
            )
        )
    db.commit()


def get_stored_candidates(db: Session, event_id: str) -> list[dict]:
    rows = db.execute(
        select(EventEpicCandidate.epic_id, Epic.title, EventEpicCandidate.score, EventEpicCandidate.rank)
        .join(Epic, Epic.id == EventEpicCandidate.epic_id)
        .where(EventEpicCandidate.event_id == event_id)
        .order_by(EventEpicCandidate.rank.asc())
    ).all()
    return [
        {"epic_id": r[0], "title": r[1], "confidence": float(r[2]), "rank": int(r[3])}
        for r in rows
    ]
