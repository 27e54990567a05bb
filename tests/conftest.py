import os

os.environ["ENV"] = "test"

from dataclasses import dataclass, field  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import voice_inbox.models  # noqa: F401,E402
from voice_inbox.db.base import Base  # noqa: E402
from voice_inbox.db.session import make_engine  # noqa: E402
from voice_inbox.services.llm.client import ChatCompletionResult  # noqa: E402
from voice_inbox.services.search import SearchHit  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'inbox.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


class FakeLlm:
    """Scripted backend: each chat call consumes the next response (or raises it)."""

    def __init__(self, responses=None, healthy: bool = True) -> None:
        self.responses = list(responses or [])
        self.healthy = healthy
        self.calls: list[dict[str, Any]] = []

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def health_check(self) -> bool:
        return self.healthy

    def chat_completion(self, messages, *, temperature=0.1, max_tokens=4096, response_format=None, timeout_s=None):
        self.calls.append(
            {
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "response_format": response_format,
                "timeout_s": timeout_s,
            }
        )
        if not self.responses:
            raise AssertionError("FakeLlm ran out of scripted responses")
        nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return ChatCompletionResult(content=nxt)


@dataclass
class FakeSearch:
    epics: list[SearchHit] = field(default_factory=list)
    knowledge: list[SearchHit] = field(default_factory=list)

    def search_epics(self, query: str, limit: int = 3) -> list[SearchHit]:
        return self.epics[:limit]

    def search_knowledge(self, query: str, limit: int = 5) -> list[SearchHit]:
        return self.knowledge[:limit]


@dataclass
class RecordingNotifier:
    sent: list[dict[str, Any]] = field(default_factory=list)

    def notify_needs_review(self, event_id, reason, candidates) -> None:
        self.sent.append({"event_id": event_id, "reason": reason, "candidates": candidates})


@pytest.fixture
def fake_llm():
    return FakeLlm()


@pytest.fixture
def fake_search():
    return FakeSearch()


@pytest.fixture
def notifier():
    return RecordingNotifier()
