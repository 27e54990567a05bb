from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from voice_inbox.models.epic import Epic, EpicAlias
from voice_inbox.models.projections import KnowledgeItem

_word_re = re.compile(r"[^\W_]+", re.UNICODE)

# Common English/Spanish filler that would otherwise dominate spoken notes
_STOPWORDS = frozenset(
    """
    the and for that this with have from they will would there their what about
    which when were been into just like also then than them some could should
    need needs okay yeah really going want know think
    que los las del por para con una uno esto esta este pero como más mas hay
    muy sobre tiene también tambien porque cuando donde todo
    """.split()
)


@dataclass
class SearchHit:
    id: str
    title: str
    content: str
    rank: int  # 0-based; lower = more relevant
    kind: str | None = None


class SearchBackend(Protocol):
    def search_epics(self, query: str, limit: int = 3) -> list[SearchHit]: ...

    def search_knowledge(self, query: str, limit: int = 5) -> list[SearchHit]: ...


def _words(text: str) -> list[str]:
    return [w for w in _word_re.findall((text or "").lower())]


def query_terms(text: str, max_terms: int = 12) -> list[str]:
    """Most frequent content words of `text` (ties keep first occurrence)."""
    words = [w for w in _words(text) if len(w) >= 3 and w not in _STOPWORDS and not w.isdigit()]
    if not words:
        return []
    counts = Counter(words)
    first_seen = {}
    for i, w in enumerate(words):
        first_seen.setdefault(w, i)
    ranked = sorted(counts, key=lambda w: (-counts[w], first_seen[w]))
    return ranked[:max_terms]


def _term_hits(terms: list[str], *texts: str | None) -> int:
    haystack = set()
    for t in texts:
        haystack.update(_words(t or ""))
    return sum(1 for term in terms if term in haystack)


class SqlSearchBackend:
    """
    Lexical relevance search over the relational store.

    ILIKE narrows a candidate pool; candidates are then ranked by how many
    distinct query terms they contain as whole words.
    """

    def __init__(self, db: Session, pool_factor: int = 10) -> None:
        self.db = db
        self.pool_factor = pool_factor

    def search_epics(self, query: str, limit: int = 3) -> list[SearchHit]:
        terms = query_terms(query)
        if not terms:
            return []

        alias_match = select(EpicAlias.epic_id).where(
            or_(*[EpicAlias.alias_norm.ilike(f"%{t}%") for t in terms])
        )
        pool = (
            self.db.execute(
                select(Epic)
                .where(Epic.status == "active")
                .where(
                    or_(
                        *[Epic.title.ilike(f"%{t}%") for t in terms],
                        *[Epic.description.ilike(f"%{t}%") for t in terms],
                        Epic.id.in_(alias_match),
                    )
                )
                .order_by(Epic.created_at.asc(), Epic.id.asc())
                .limit(limit * self.pool_factor)
            )
            .scalars()
            .all()
        )
        if not pool:
            return []

        aliases: dict[str, list[str]] = {}
        for epic_id, alias in self.db.execute(
            select(EpicAlias.epic_id, EpicAlias.alias).where(EpicAlias.epic_id.in_([e.id for e in pool]))
        ):
            aliases.setdefault(epic_id, []).append(alias)

        scored = []
        for order, epic in enumerate(pool):
            hits = _term_hits(terms, epic.title, epic.description, " ".join(aliases.get(epic.id, [])))
            if hits > 0:
                scored.append((hits, order, epic))

        # stable: more hits first, then pool order
        scored.sort(key=lambda x: (-x[0], x[1]))
        return [
            SearchHit(id=e.id, title=e.title, content=e.description or "", rank=i)
            for i, (_hits, _order, e) in enumerate(scored[:limit])
        ]

    def search_knowledge(self, query: str, limit: int = 5) -> list[SearchHit]:
        terms = query_terms(query)
        if not terms:
            return []

        pool = (
            self.db.execute(
                select(KnowledgeItem)
                .where(
                    or_(
                        *[KnowledgeItem.title.ilike(f"%{t}%") for t in terms],
                        *[KnowledgeItem.body_md.ilike(f"%{t}%") for t in terms],
                    )
                )
                .order_by(KnowledgeItem.created_at.desc())
                .limit(limit * self.pool_factor)
            )
            .scalars()
            .all()
        )

        scored = []
        for order, item in enumerate(pool):
            hits = _term_hits(terms, item.title, item.body_md)
            if hits > 0:
                scored.append((hits, order, item))
        scored.sort(key=lambda x: (-x[0], x[1]))

        return [
            SearchHit(id=k.id, title=k.title, content=k.body_md, rank=i, kind=k.kind)
            for i, (_hits, _order, k) in enumerate(scored[:limit])
        ]
