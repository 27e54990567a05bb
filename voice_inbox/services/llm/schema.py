"""Pydantic schema for the extraction output the model must produce."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from voice_inbox.services.llm.json_repair import repair_json, strip_code_fence


class ExtractionParseError(ValueError):
    """Model output could not be parsed or failed schema validation."""


class _Schema(BaseModel):
    model_config = ConfigDict(extra="ignore")


def _none_to_empty(v: Any) -> Any:
    return "" if v is None else v


class EpicReference(_Schema):
    epic_id: str
    confidence: float = Field(ge=0, le=1)


class EpicMention(_Schema):
    name: str
    confidence: float = Field(ge=0, le=1)


class ExtractedAction(_Schema):
    type: Literal["follow_up", "deadline", "email"]
    title: str = Field(min_length=1, max_length=500)
    priority: Literal["P0", "P1", "P2"]
    due_at: Optional[datetime] = None
    mentions: List[str] = Field(default_factory=list)
    body: str = ""

    @field_validator("priority", mode="before")
    @classmethod
    def fold_p3(cls, v: Any) -> Any:
        # models like to invent P3; the tracker only has three levels
        return "P2" if v == "P3" else v

    empty_body = field_validator("body", mode="before")(_none_to_empty)


class ExtractedDeadline(_Schema):
    title: str = Field(min_length=1, max_length=500)
    priority: Literal["P0", "P1"]
    due_at: datetime


class ExtractedBlocker(_Schema):
    description: str = Field(min_length=1, max_length=2000)
    status: Literal["open"] = "open"
    owner: Optional[str] = None
    eta: Optional[str] = None


class ExtractedDependency(ExtractedBlocker):
    pass


class ExtractedIssue(_Schema):
    description: str = Field(min_length=1, max_length=2000)
    status: Literal["open"] = "open"


class ExtractedKnowledge(_Schema):
    title: str = Field(min_length=1, max_length=500)
    kind: Literal["tech", "decision", "process"]
    tags: List[str] = Field(default_factory=list)
    body_md: str = ""

    empty_body = field_validator("body_md", mode="before")(_none_to_empty)


class EmailDraft(_Schema):
    subject: str = Field(min_length=1, max_length=500)
    body: str = ""

    empty_body = field_validator("body", mode="before")(_none_to_empty)


class SuggestedNewEpic(_Schema):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=1000)
    aliases: List[str] = Field(default_factory=list)

    empty_description = field_validator("description", mode="before")(_none_to_empty)


_LIST_FIELDS = (
    "labels",
    "epic_mentions",
    "new_actions",
    "new_deadlines",
    "blockers",
    "dependencies",
    "issues",
    "knowledge_items",
    "email_drafts",
    "evidence_snippets",
)


class ExtractionOutput(_Schema):
    labels: List[str] = Field(default_factory=list)
    resolved_epic: Optional[EpicReference] = None
    epic_mentions: List[EpicMention] = Field(default_factory=list)
    suggested_new_epic: Optional[SuggestedNewEpic] = None
    new_actions: List[ExtractedAction] = Field(default_factory=list)
    new_deadlines: List[ExtractedDeadline] = Field(default_factory=list)
    blockers: List[ExtractedBlocker] = Field(default_factory=list)
    dependencies: List[ExtractedDependency] = Field(default_factory=list)
    issues: List[ExtractedIssue] = Field(default_factory=list)
    knowledge_items: List[ExtractedKnowledge] = Field(default_factory=list)
    email_drafts: List[EmailDraft] = Field(default_factory=list)
    needs_review: bool = False
    evidence_snippets: List[str] = Field(default_factory=list)

    @field_validator(*_LIST_FIELDS, mode="before")
    @classmethod
    def null_list(cls, v: Any) -> Any:
        return [] if v is None else v

    def summary(self) -> dict[str, int]:
        return {
            "actions": len(self.new_actions),
            "deadlines": len(self.new_deadlines),
            "email_drafts": len(self.email_drafts),
            "blockers": len(self.blockers),
            "dependencies": len(self.dependencies),
            "issues": len(self.issues),
            "knowledge_items": len(self.knowledge_items),
        }


def format_validation_errors(err: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in err.errors()
    )


def parse_extraction_output(raw: str) -> ExtractionOutput:
    """Fence-strip, repair, parse and validate one model response."""
    text = repair_json(strip_code_fence(raw))
    if not text:
        raise ExtractionParseError("Empty response from model")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ExtractionParseError(f"Invalid JSON: {e.msg} at line {e.lineno} column {e.colno}") from e

    if not isinstance(data, dict):
        raise ExtractionParseError(f"Expected a JSON object, got {type(data).__name__}")

    try:
        return ExtractionOutput.model_validate(data)
    except ValidationError as e:
        raise ExtractionParseError(format_validation_errors(e)) from e
