from voice_inbox.models.event import MANUAL_EVENT_ID, Event, EventRun
from voice_inbox.models.job import Job
from voice_inbox.models.epic import Epic, EpicAlias, EventEpicCandidate
from voice_inbox.models.projections import (  # noqa: F401
    PROJECTION_MODELS,
    Action,
    Blocker,
    Dependency,
    Issue,
    KnowledgeItem,
    Mention,
)

__all__ = [
    "MANUAL_EVENT_ID",
    "Event",
    "EventRun",
    "Job",
    "Epic",
    "EpicAlias",
    "EventEpicCandidate",
    "Action",
    "Mention",
    "Blocker",
    "Dependency",
    "Issue",
    "KnowledgeItem",
]
